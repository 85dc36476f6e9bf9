def is_json_content_type(content_type: str | None) -> bool:
    """True for ``application/json`` and ``+json`` media types, ignoring parameters."""
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")
