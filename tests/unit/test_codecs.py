import pytest
from mbc.pipeline.codecs import CODEC_GROUPS, family_of, compatible, is_h264

@pytest.mark.parametrize("codec, family", [
    ("h264", "h264"),
    ("AVC1", "h264"),
    ("libx264", "h264"),
    ("hevc", "h265"),
    ("hvc1", "h265"),
    ("aac_latm", "aac"),
    ("libmp3lame", "mp3"),
    ("wmav2", "wma"),
    ("wmv3", "wmv"),
    ("vc1", "wmv"),
])
def test_family_of_aliases(codec, family):
    assert family_of(codec) == family

def test_family_of_unknown_and_missing():
    assert family_of("ProRes") == "prores"
    assert family_of(None) == ""
    assert family_of("") == ""

def test_family_of_idempotent():
    for _, aliases in CODEC_GROUPS:
        for alias in aliases:
            assert family_of(family_of(alias)) == family_of(alias)

def test_compatible_within_and_across_groups():
    for _, aliases in CODEC_GROUPS:
        for a in aliases:
            for b in aliases:
                assert compatible(a, b)

    assert not compatible("h264", "hevc")
    assert not compatible("aac", "mp3")
    assert not compatible("wmav2", "wmv2")

def test_is_h264():
    assert is_h264("avc1")
    assert is_h264("libx264")
    assert not is_h264("mpeg4")
    assert not is_h264(None)
