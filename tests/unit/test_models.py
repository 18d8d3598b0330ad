import pytest

from kuberesolver.errors import WatchDecodeError
from kuberesolver.models import ChangeEvent, EventType, Snapshot


def test_endpoints_object_decoding(make_endpoints):
    snapshot = Snapshot.from_object(
        make_endpoints(addresses=("1.1.1.1", "2.2.2.2"), not_ready=("3.3.3.3",), resource_version="42")
    )

    assert snapshot.name == "service"
    assert snapshot.namespace == "test-namespace"
    assert snapshot.resource_version == "42"
    assert snapshot.address_count == 3
    group = snapshot.groups[0]
    assert [a.ip for a in group.ready_addresses] == ["1.1.1.1", "2.2.2.2"]
    assert group.ports[0].port == 8080


def test_endpoints_without_subsets():
    snapshot = Snapshot.from_object({"metadata": {"name": "service"}})

    assert snapshot.groups == ()


def test_endpoint_slice_decoding():
    snapshot = Snapshot.from_object(
        {
            "kind": "EndpointSlice",
            "metadata": {"name": "service-abc", "namespace": "ns", "resourceVersion": "7"},
            "endpoints": [
                {"addresses": ["10.0.0.1"], "conditions": {"ready": True}, "zone": "z1"},
                {"addresses": ["10.0.0.2"], "conditions": {"ready": False, "terminating": True}},
                {"addresses": ["10.0.0.3"]},
            ],
            "ports": [{"name": "grpc", "port": 9090}],
        }
    )

    group = snapshot.groups[0]
    assert [a.ip for a in group.ready_addresses] == ["10.0.0.1", "10.0.0.3"]
    assert group.addresses[0].zone == "z1"
    assert group.addresses[1].terminating is True


def test_malformed_object_raises():
    with pytest.raises(WatchDecodeError):
        Snapshot.from_object({"subsets": [{"addresses": [{"hostname": "no-ip"}]}]})


def test_event_decoding(make_endpoints):
    event = ChangeEvent.from_dict({"type": "MODIFIED", "object": make_endpoints(resource_version="9")})

    assert event.type is EventType.MODIFIED
    assert event.resource_version == "9"


def test_error_event_decoding():
    event = ChangeEvent.from_dict(
        {"type": "ERROR", "object": {"kind": "Status", "code": 410, "message": "too old resource version"}}
    )

    assert event.type is EventType.ERROR
    assert event.status_code == 410
    assert event.error == "too old resource version"
    assert event.snapshot is None


@pytest.mark.parametrize("data", [{"type": "BOGUS", "object": {}}, {"object": {}}, ["ADDED"]])
def test_invalid_events_raise(data):
    with pytest.raises(WatchDecodeError):
        ChangeEvent.from_dict(data)


def test_merge_keeps_group_order():
    first = Snapshot.from_object({"metadata": {"name": "a"}, "endpoints": [], "ports": []})
    second = Snapshot.from_object({"metadata": {"name": "b"}, "endpoints": [], "ports": []})

    merged = Snapshot.merge("service", "ns", "5", [first, second])

    assert len(merged.groups) == 2
    assert merged.resource_version == "5"
