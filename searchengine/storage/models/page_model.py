from tortoise import fields, models


class Page(models.Model):
    """
    Fetched page of a site; ``path`` is relative to the site host.
    """
    id = fields.IntField(pk=True)
    site = fields.ForeignKeyField(
        "models.Site",
        related_name="pages",
        on_delete=fields.CASCADE,
    )
    path = fields.CharField(max_length=768, index=True)
    code = fields.IntField()
    content = fields.TextField()

    class Meta:
        table = "pages"
        unique_together = (("site", "path"),)

    def __str__(self):
        return f"{self.path} [{self.code}]"
