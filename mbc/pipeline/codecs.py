from typing import Optional

H264 = "h264"
H265 = "h265"
AAC = "aac"
MP3 = "mp3"
WMV = "wmv"
WMA = "wma"

# Order matters: checked first to last with substring matching
CODEC_GROUPS = [
    (H264, ("h264", "libx264", "avc1")),
    (H265, ("h265", "hevc", "libx265", "hvc1")),
    (AAC, ("aac", "libfdk_aac")),
    (MP3, ("mp3", "libmp3lame")),
    (WMA, ("wmav1", "wmav2", "wmapro", "wma")),
    (WMV, ("wmv1", "wmv2", "wmv3", "vc1", "wmv")),
]

def family_of(codec_id: Optional[str]) -> str:
    """Maps an encoder/decoder id to its compatibility family.

    Unknown ids map to themselves (lowercased); None maps to ''.
    """
    if not codec_id:
        return ""
    lower = codec_id.lower()
    for family, aliases in CODEC_GROUPS:
        if any(alias in lower for alias in aliases):
            return family
    return lower

def compatible(a: Optional[str], b: Optional[str]) -> bool:
    return family_of(a) == family_of(b)

def is_h264(codec_id: Optional[str]) -> bool:
    return family_of(codec_id) == H264
