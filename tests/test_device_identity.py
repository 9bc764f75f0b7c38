from __future__ import annotations

import json
import re

from app.client.device_identity import DeviceIdentityProvider, generate_device_id


def test_generated_ids_are_prefixed_and_unique() -> None:
    ids = {generate_device_id() for _ in range(50)}

    assert len(ids) == 50
    assert all(re.fullmatch(r"DEV-[A-Z2-9]{12}", value) for value in ids)


def test_id_is_stable_across_instances(tmp_path) -> None:
    path = tmp_path / "client" / "device.json"

    first = DeviceIdentityProvider(path).get_device_id()
    second = DeviceIdentityProvider(path).get_device_id()

    assert first == second
    assert json.loads(path.read_text(encoding="utf-8")) == {"device_id": first}


def test_corrupt_file_is_replaced(tmp_path) -> None:
    path = tmp_path / "device.json"
    path.write_text("{not json", encoding="utf-8")

    device_id = DeviceIdentityProvider(path).get_device_id()

    assert device_id.startswith("DEV-")
    assert DeviceIdentityProvider(path).get_device_id() == device_id
