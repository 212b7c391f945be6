"""Metadata helpers using mutagen for legacy -> WAV/AIFF tag copying.

Source tags are read through mutagen's "easy" interface where one exists
(MP3, FLAC, Ogg, Opus, MP4) and through the ASF attribute names for WMA.
Destinations get an ID3 chunk, which both the WAVE and AIFF readers in
mutagen (and most players) understand.

Everything here is best-effort: callers treat failures as non-fatal.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Optional, Protocol, Tuple

from loguru import logger


# easy key -> ASF attribute used by WMA files
_ASF_KEYS = {
    "title": "Title",
    "artist": "Author",
    "albumartist": "WM/AlbumArtist",
    "album": "WM/AlbumTitle",
    "genre": "WM/Genre",
    "date": "WM/Year",
    "tracknumber": "WM/TrackNumber",
    "discnumber": "WM/PartOfSet",
    "composer": "WM/Composer",
}

# easy key -> ID3 frame id written to the destination
_ID3_FRAMES = {
    "title": "TIT2",
    "artist": "TPE1",
    "albumartist": "TPE2",
    "album": "TALB",
    "genre": "TCON",
    "date": "TDRC",
    "tracknumber": "TRCK",
    "discnumber": "TPOS",
    "composer": "TCOM",
}


class MetadataProvider(Protocol):
    def copy_tags(self, src: Path, dest: Path) -> None: ...

    def read_album_tags(self, path: Path) -> Optional[Tuple[str, str]]: ...


def _as_text(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        if not value:
            return None
        value = value[0]
    # ASF attributes and ID3 frames both carry a .value / .text payload
    value = getattr(value, "value", value)
    text = getattr(value, "text", value)
    if isinstance(text, (list, tuple)):
        text = text[0] if text else None
    if text is None:
        return None
    s = str(text).strip()
    return s or None


def read_text_tags(src: Path) -> Dict[str, str]:
    """Return {easy_key: first value} for the tags we know how to carry over."""
    import mutagen
    from mutagen.asf import ASF

    f = mutagen.File(str(src), easy=True)
    if f is None or f.tags is None:
        return {}
    out: Dict[str, str] = {}
    if isinstance(f, ASF):
        for key, asf_key in _ASF_KEYS.items():
            val = _as_text(f.tags.get(asf_key))
            if val:
                out[key] = val
        return out
    for key, frame_id in _ID3_FRAMES.items():
        try:
            val = _as_text(f.tags.get(key))
        except (KeyError, ValueError):
            val = None
        if val is None:
            # Non-easy ID3 containers (WAV/AIFF) expose raw frame ids instead
            try:
                val = _as_text(f.tags.get(frame_id))
            except (KeyError, ValueError):
                val = None
        if val:
            out[key] = val
    return out


def _front_cover(src: Path) -> Optional[Tuple[str, bytes]]:
    """Return (mime, data) for the front cover if the source embeds one."""
    import mutagen
    from mutagen.mp4 import MP4Cover

    f = mutagen.File(str(src))
    if f is None:
        return None
    pictures = list(getattr(f, "pictures", []) or [])  # FLAC
    for pic in pictures:
        if getattr(pic, "type", None) == 3 and pic.data:
            return pic.mime or "image/jpeg", bytes(pic.data)
    if len(pictures) == 1 and pictures[0].data:
        return pictures[0].mime or "image/jpeg", bytes(pictures[0].data)

    tags = f.tags
    if tags is None:
        return None
    if hasattr(tags, "getall"):  # ID3
        apics = tags.getall("APIC")
        if apics:
            return apics[0].mime or "image/jpeg", bytes(apics[0].data)
        return None
    covr = tags.get("covr") if hasattr(tags, "get") else None  # MP4
    if covr:
        cover = covr[0]
        mime = "image/png" if getattr(cover, "imageformat", None) == MP4Cover.FORMAT_PNG else "image/jpeg"
        return mime, bytes(cover)
    return None


def copy_tags(src: Path, dest: Path) -> int:
    """Copy common text tags and the front cover from `src` onto WAV/AIFF `dest`.

    Returns the number of frames written. Raises on unreadable files; the
    engine catches and logs.
    """
    from mutagen.aiff import AIFF
    from mutagen.id3 import APIC, Frames
    from mutagen.wave import WAVE

    text = read_text_tags(src)
    cover = _front_cover(src)
    if not text and cover is None:
        return 0

    suffix = dest.suffix.lower()
    dst = WAVE(str(dest)) if suffix == ".wav" else AIFF(str(dest))
    if dst.tags is None:
        dst.add_tags()

    written: List[str] = []
    for key, value in text.items():
        frame_id = _ID3_FRAMES[key]
        dst.tags.setall(frame_id, [Frames[frame_id](encoding=3, text=[value])])
        written.append(frame_id)
    if cover is not None:
        mime, data = cover
        dst.tags.setall("APIC", [APIC(encoding=3, mime=mime, type=3, desc="Cover", data=data)])
        written.append("APIC")
    dst.save()
    logger.debug(f"Metadata copied from {src.name} to {dest.name}: {', '.join(written)}")
    return len(written)


def read_album_tags(path: Path) -> Optional[Tuple[str, str]]:
    """(artist, album) for album keying; album artist wins over track artist.

    Returns None when either is missing or the file cannot be parsed.
    """
    try:
        tags = read_text_tags(path)
    except Exception as e:
        logger.debug(f"Could not read tags from {path.name}: {e}")
        return None
    artist = tags.get("albumartist") or tags.get("artist")
    album = tags.get("album")
    if not artist or not album:
        return None
    return artist, album


class MutagenMetadata:
    """Default metadata provider backed by mutagen."""

    def copy_tags(self, src: Path, dest: Path) -> None:
        copy_tags(src, dest)

    def read_album_tags(self, path: Path) -> Optional[Tuple[str, str]]:
        return read_album_tags(path)
