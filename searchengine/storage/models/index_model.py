from tortoise import fields, models


class Index(models.Model):
    """
    Weight of one lemma on one page (its in-page occurrence count).
    """
    id = fields.IntField(pk=True)
    page = fields.ForeignKeyField(
        "models.Page",
        related_name="index_entries",
        on_delete=fields.CASCADE,
    )
    lemma = fields.ForeignKeyField(
        "models.Lemma",
        related_name="index_entries",
        on_delete=fields.CASCADE,
    )
    rank = fields.FloatField()

    class Meta:
        table = "page_index"
        unique_together = (("page", "lemma"),)
