from app.tasks.publications import process_publication_upload

__all__ = [
    "process_publication_upload",
]
