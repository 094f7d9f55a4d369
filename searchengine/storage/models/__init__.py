from .site_model import Site, SiteStatus
from .page_model import Page
from .lemma_model import Lemma
from .index_model import Index

MODEL_MODULES = [
    "searchengine.storage.models.site_model",
    "searchengine.storage.models.page_model",
    "searchengine.storage.models.lemma_model",
    "searchengine.storage.models.index_model",
]

__all__ = [
    "Site",
    "SiteStatus",
    "Page",
    "Lemma",
    "Index",
    "MODEL_MODULES",
]
