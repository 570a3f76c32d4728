"""Status, history and record management service wrappers."""

from flexiconvert.services import conversion_service


def get_status(record_id: str):
    return conversion_service.get_status(record_id)


def history():
    return conversion_service.history()


def stats():
    return conversion_service.stats()


def delete_record(record_id: str):
    return conversion_service.delete_record(record_id)
