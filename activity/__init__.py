from .recorder import EventRecordError, record_event

__all__ = ["EventRecordError", "record_event"]
