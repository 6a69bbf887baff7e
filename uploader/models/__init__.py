from .upload_completed import UploadCompleted, UploadCompletedBuilder

__all__ = ["UploadCompleted", "UploadCompletedBuilder"]
