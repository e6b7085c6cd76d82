from scripts.generate_telemetry import PROFILES, generate


def test_generate_telemetry_schema() -> None:
    devices, telemetry = generate(n_devices=4, days=2, seed=7)
    assert len(devices) == 4
    assert set(telemetry) == {d.device_id for d in devices}

    d = devices[0]
    assert d.category in PROFILES
    assert d.name

    samples = telemetry[d.device_id]
    assert len(samples) == 48
    assert samples[0].timestamp < samples[-1].timestamp
    assert all(s.voltage > 0 for s in samples)
    assert sum(s.maintenance_flag for s in samples) <= 1
