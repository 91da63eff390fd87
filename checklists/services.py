from __future__ import annotations

import logging
from functools import lru_cache

from . import config
from .reconciler import SubmissionReconciler
from .report import Branding, ReportRenderer
from .storage import LocalObjectStorage


@lru_cache(maxsize=1)
def get_storage() -> LocalObjectStorage:
    return LocalObjectStorage(
        config.UPLOAD_DIR,
        config.PUBLIC_BASE_URL,
        secret=config.DOWNLOAD_SECRET,
        max_age=config.DOWNLOAD_MAX_AGE,
    )


@lru_cache(maxsize=1)
def get_reconciler() -> SubmissionReconciler:
    return SubmissionReconciler(
        get_storage(),
        logger=logging.getLogger("checklists.reconciler"),
        debug=config.DEBUG,
        require_photo_on_final=config.REQUIRE_PHOTO_ON_FINAL,
        protocol_prefix=config.PROTOCOL_PREFIX,
        max_upload_bytes=config.UPLOAD_MAX_BYTES,
    )


def build_renderer(branding: Branding) -> ReportRenderer:
    # one renderer per document: it keeps the page bookkeeping of the last render
    return ReportRenderer(
        get_storage().read_bytes,
        branding=branding,
        font_path=config.PDF_FONT_PATH,
        bold_font_path=config.PDF_BOLD_FONT_PATH,
    )
