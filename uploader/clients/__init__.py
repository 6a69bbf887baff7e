from .data_acquisition import DataAcquisitionClient, NotificationClient

__all__ = ["DataAcquisitionClient", "NotificationClient"]
