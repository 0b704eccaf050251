"""Test public API surface - ensure imports work correctly and no side effects."""

from pathlib import Path


def test_root_exports():
    import chainverify

    for name in chainverify.__all__:
        assert hasattr(chainverify, name), name
    assert callable(chainverify.verify_ndjson)
    assert callable(chainverify.verify_pack)


def test_version():
    import chainverify

    # In dev mode it's "dev", in installed mode it's "1.0.0"
    assert chainverify.__version__ in ("1.0.0", "dev")


def test_reason_codes_are_strings():
    from chainverify import ReasonCode
    from chainverify.codes import PARTIAL_CAPABLE, TERMINAL, is_partial_capable

    assert ReasonCode.MISSING_SEAL == "MISSING_SEAL"
    assert is_partial_capable("TRUNCATED_LAST_LINE")
    assert is_partial_capable(ReasonCode.MISSING_SEAL)
    assert not is_partial_capable("CHAIN_HASH_MISMATCH")
    assert PARTIAL_CAPABLE & TERMINAL == {ReasonCode.TRUNCATED_LAST_LINE}


def test_results_serialize(chain):
    from chainverify import verify_ndjson

    result = verify_ndjson(chain().segment().seal().data())
    dumped = result.model_dump()
    assert dumped["verdict"] == "PASS"
    assert dumped["stats"]["by_type"]["segment"] == 1


def test_src_layout():
    repo_root = Path(__file__).resolve().parent.parent
    src = repo_root / "src" / "chainverify"
    assert (src / "kernel").is_dir()
    assert (src / "_internal").is_dir()
    assert (src / "__init__.py").is_file()
