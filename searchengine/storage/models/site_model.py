from enum import Enum

from tortoise import fields, models, timezone


class SiteStatus(str, Enum):
    INDEXING = "INDEXING"
    INDEXED = "INDEXED"
    FAILED = "FAILED"


class Site(models.Model):
    """
    Configured site and the state of its last indexing run.
    """
    id = fields.IntField(pk=True)

    url = fields.CharField(max_length=255, unique=True)
    name = fields.CharField(max_length=255)

    status = fields.CharEnumField(SiteStatus, max_length=16)
    status_time = fields.DatetimeField(default=timezone.now)
    last_error = fields.TextField(null=True)

    class Meta:
        table = "sites"

    def __str__(self):
        return f"{self.url} [{self.status}]"
