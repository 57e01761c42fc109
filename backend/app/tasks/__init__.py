from app.tasks.imports import run_batch_import, run_document_import, run_single_import

__all__ = ["run_single_import", "run_batch_import", "run_document_import"]
