import json
import threading

import pytest

from botpanel.local.errors import INVALID_ENV_VAR, MISSING_FIELD, NOT_FOUND, InvalidInputError, NotFoundError
from botpanel.local.registry import BotRegistry


def test_register_creates_record_once(registry):
    assert registry.register("echo") is True
    assert registry.register("echo") is False
    assert registry.list_names() == ["echo"]
    assert registry.exists("echo")
    assert not registry.exists("other")


def test_file_layout(registry):
    registry.register("echo")
    registry.set_env_var("echo", "TOKEN", "abc")
    data = json.loads(registry.path.read_text())
    assert data == {"bots": {"echo": {"env": {"TOKEN": "abc"}}}}


def test_register_keeps_existing_env(registry):
    registry.register("echo")
    registry.set_env_var("echo", "TOKEN", "abc")
    registry.register("echo")
    assert registry.get_env("echo") == {"TOKEN": "abc"}


def test_env_survives_new_instance(registry):
    registry.register("echo")
    registry.set_env_var("echo", "TOKEN", "abc")
    assert BotRegistry(registry.path).get_env("echo") == {"TOKEN": "abc"}


def test_get_env_returns_copy(registry):
    registry.register("echo")
    env = registry.get_env("echo")
    env["INJECTED"] = "1"
    assert registry.get_env("echo") == {}


def test_set_env_var_strips_key_and_overwrites(registry):
    registry.register("echo")
    registry.set_env_var("echo", " TOKEN ", "one")
    registry.set_env_var("echo", "TOKEN", "two")
    assert registry.get_env("echo") == {"TOKEN": "two"}


@pytest.mark.parametrize("key, value", [("", "x"), ("   ", "x"), ("TOKEN", None), ("TOKEN", 5)])
def test_set_env_var_rejects_missing_fields(registry, key, value):
    registry.register("echo")
    with pytest.raises(InvalidInputError) as excinfo:
        registry.set_env_var("echo", key, value)
    assert excinfo.value.code == MISSING_FIELD


@pytest.mark.parametrize("key, value", [("A=B", "x"), ("=A", "x"), ("A\0B", "x"), ("TOKEN", "a\0b")])
def test_set_env_var_rejects_names_and_values_a_process_cannot_take(registry, key, value):
    registry.register("echo")
    with pytest.raises(InvalidInputError) as excinfo:
        registry.set_env_var("echo", key, value)
    assert excinfo.value.code == INVALID_ENV_VAR
    assert registry.get_env("echo") == {}


def test_unknown_bot_is_not_found(registry):
    with pytest.raises(NotFoundError):
        registry.get_env("ghost")
    with pytest.raises(NotFoundError):
        registry.set_env_var("ghost", "A", "b")
    with pytest.raises(NotFoundError):
        registry.remove("ghost")


def test_delete_env_var(registry):
    registry.register("echo")
    registry.set_env_var("echo", "A", "1")
    registry.set_env_var("echo", "B", "2")
    registry.delete_env_var("echo", "A")
    assert registry.get_env("echo") == {"B": "2"}

    with pytest.raises(NotFoundError) as excinfo:
        registry.delete_env_var("echo", "A")
    assert excinfo.value.code == NOT_FOUND


def test_remove(registry):
    registry.register("echo")
    registry.register("other")
    registry.remove("echo")
    assert registry.list_names() == ["other"]


def test_corrupt_file_is_set_aside(registry):
    registry.path.write_text("{not json")
    assert registry.list_names() == []
    assert registry.path.with_suffix(".corrupt").read_text() == "{not json"

    registry.register("echo")
    assert registry.list_names() == ["echo"]


def test_concurrent_edits_do_not_lose_writes(registry):
    registry.register("echo")

    def set_var(i):
        registry.set_env_var("echo", f"KEY_{i}", str(i))

    threads = [threading.Thread(target=set_var, args=(i,)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    env = registry.get_env("echo")
    assert env == {f"KEY_{i}": str(i) for i in range(20)}
