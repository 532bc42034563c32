import pytest
from levelscript.state.flags import FlagKey, FlagNamespace

def test_encode_format():
    key = FlagKey.of(FlagNamespace.TAKE_ONCE, "Library", "desk", "key")
    assert key.encode() == "__take_once::Library::desk::key"
    assert str(key) == key.encode()

def test_decode_is_inverse():
    key = FlagKey.of(FlagNamespace.GIVE_ONCE, "Library", "odd::id", "50%")
    encoded = key.encode()

    # The separator inside an id never leaks into the encoding
    assert encoded.count("::") == 3
    assert FlagKey.decode(encoded) == key

def test_equal_inputs_equal_strings():
    a = FlagKey.of(FlagNamespace.CHOICE_FX_COUNT, "Library", "mira", 2.0)
    b = FlagKey.of(FlagNamespace.CHOICE_FX_COUNT, "Library", "mira", "2")
    assert a.encode() == b.encode()

def test_distinct_namespaces_never_collide():
    encoded = {FlagKey.of(ns, "Library", "desk").encode() for ns in FlagNamespace}
    assert len(encoded) == len(FlagNamespace)

def test_scene_scopes_keys():
    a = FlagKey.of(FlagNamespace.TILE_REMOVED, "Library", "chest")
    b = FlagKey.of(FlagNamespace.TILE_REMOVED, "Forest", "chest")
    assert a.encode() != b.encode()

def test_decode_rejects_plain_text():
    with pytest.raises(ValueError):
        FlagKey.decode("minesweeperBoardCleared")
    with pytest.raises(ValueError):
        FlagKey.decode("__no_such_namespace::a::b")

def test_is_encoded():
    assert FlagKey.is_encoded(FlagKey.of(FlagNamespace.NPC_FLIP, "A", "b").encode())
    assert not FlagKey.is_encoded("hasHairpin")
