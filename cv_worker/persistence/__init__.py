from cv_worker.persistence.store import JobStore, SqlAlchemyJobStore

__all__ = ["JobStore", "SqlAlchemyJobStore"]
