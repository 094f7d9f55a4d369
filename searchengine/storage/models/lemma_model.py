from tortoise import fields, models


class Lemma(models.Model):
    """
    Lemma of a site. ``frequency`` counts the site's pages that contain it.
    """
    id = fields.IntField(pk=True)
    site = fields.ForeignKeyField(
        "models.Site",
        related_name="lemmas",
        on_delete=fields.CASCADE,
    )
    lemma = fields.CharField(max_length=255, index=True)
    frequency = fields.IntField(default=0)

    class Meta:
        table = "lemmas"
        unique_together = (("site", "lemma"),)
