# Models module
from ytfield.models.option import Option
from ytfield.models.upload_job import UploadJob

__all__ = ["Option", "UploadJob"]
