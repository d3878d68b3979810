from scheduler.core.config import MAX_NOTES_LENGTH


def clean_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_NOTES_LENGTH} characters or fewer.')

    return normalized


def clean_required(value: str, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field_name} is required.')
    return normalized
