from database.store import CreatorStore, DatabaseError, UniqueViolation, new_id

__all__ = ['CreatorStore', 'DatabaseError', 'UniqueViolation', 'new_id']
