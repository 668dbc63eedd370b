from __future__ import annotations

from ..models import CallDirection


AUDIO_CONTENT_TYPE_PREFIX = "audio/"
AUDIO_EXTENSIONS: tuple[str, ...] = (".m4a", ".mp3", ".wav", ".ogg", ".flac", ".aac", ".m4b")


def is_audio(name: str | None, content_type: str | None) -> bool:
    """
    判断变更条目是否为音频文件：content-type 以 audio/ 开头，或文件名后缀命中
    AUDIO_EXTENSIONS（大小写不敏感）。纯函数，不抛异常。
    """
    if (content_type or "").startswith(AUDIO_CONTENT_TYPE_PREFIX):
        return True
    lowered = (name or "").lower()
    return any(lowered.endswith(ext) for ext in AUDIO_EXTENSIONS)


def infer_direction(name: str | None) -> CallDirection:
    """
    根据文件名推断通话方向（启发式）。

    大小写不敏感的子串匹配，incoming 优先于 outgoing；
    同时包含两者时按优先级判定为 incoming。
    """
    lowered = (name or "").lower()
    if "incoming" in lowered:
        return CallDirection.INCOMING
    if "outgoing" in lowered:
        return CallDirection.OUTGOING
    return CallDirection.UNKNOWN
