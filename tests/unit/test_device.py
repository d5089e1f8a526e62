"""
Unit tests for devices, the device registry and selectors.
"""

from __future__ import annotations

import pytest

from pyoffload.backends.base import BackendType
from pyoffload.config import RuntimeConfig, set_config
from pyoffload.core.device import (
    Aspect,
    Device,
    DeviceRegistry,
    DeviceType,
    get_devices,
    get_registry,
    matches_filter,
)
from pyoffload.core.selectors import (
    REJECT,
    accelerator_selector,
    aspect_selector,
    cpu_selector,
    default_selector,
    gpu_selector,
    select_device,
    usm_selector,
)
from pyoffload.exceptions import DeviceNotFoundError


def _fake_device(device_type: DeviceType, index: int = 0, *aspects: Aspect) -> Device:
    backend_type = BackendType.CPU if device_type == DeviceType.CPU else BackendType.CUDA
    return Device(
        name=f"fake {device_type.name.lower()}",
        device_type=device_type,
        backend_type=backend_type,
        index=index,
        aspects=frozenset(aspects),
    )


class TestDevice:
    """Tests for Device."""

    def test_cpu_device_properties(self, cpu_device: Device) -> None:
        """Test the CPU device is described correctly."""
        assert cpu_device.is_cpu
        assert not cpu_device.is_gpu
        assert cpu_device.backend_type == BackendType.CPU
        assert cpu_device.filter_string == "cpu:0"
        assert cpu_device.backend is not None

    def test_cpu_device_aspects(self, cpu_device: Device) -> None:
        """Test CPU devices support every USM kind."""
        assert cpu_device.has(Aspect.USM_DEVICE_ALLOCATIONS)
        assert cpu_device.has("usm_shared_allocations")
        assert cpu_device.has(Aspect.USM_HOST_ALLOCATIONS)
        assert not cpu_device.has(Aspect.GPU)

    def test_unknown_aspect_string(self, cpu_device: Device) -> None:
        """Test aspect names are validated."""
        with pytest.raises(ValueError):
            cpu_device.has("teleportation")

    def test_equality_ignores_backend_instance(self, cpu_device: Device) -> None:
        """Test devices from separate enumerations compare equal."""
        DeviceRegistry.reset()
        again = select_device("cpu")

        assert again == cpu_device
        assert hash(again) == hash(cpu_device)

    def test_info(self, cpu_device: Device) -> None:
        """Test the info dictionary."""
        info = cpu_device.info()

        assert info["device_type"] == "CPU"
        assert info["filter_string"] == "cpu:0"
        assert "usm_device_allocations" in info["aspects"]

    def test_print_device_info(self, cpu_device: Device, capsys: pytest.CaptureFixture[str]) -> None:
        """Test device info is printed."""
        cpu_device.print_device_info()

        assert "cpu:0" in capsys.readouterr().out

    def test_str(self, cpu_device: Device) -> None:
        """Test string form includes the filter string."""
        assert str(cpu_device).endswith("[cpu:0]")

    def test_default_selector_scores(self) -> None:
        """Test GPUs rank above accelerators above CPUs."""
        gpu = _fake_device(DeviceType.GPU)
        acc = _fake_device(DeviceType.ACCELERATOR)
        cpu = _fake_device(DeviceType.CPU)

        assert gpu.default_selector_score > acc.default_selector_score
        assert acc.default_selector_score > cpu.default_selector_score


class TestDeviceRegistry:
    """Tests for DeviceRegistry."""

    def test_singleton(self) -> None:
        """Test the registry is shared."""
        assert get_registry() is get_registry()

    def test_at_least_one_cpu(self) -> None:
        """Test a CPU device is always present."""
        assert any(d.is_cpu for d in get_devices())

    def test_multiple_cpu_devices(self, two_cpu_devices: list[Device]) -> None:
        """Test cpu_device_count exposes several CPU devices."""
        assert [d.filter_string for d in two_cpu_devices] == ["cpu:0", "cpu:1"]
        assert two_cpu_devices[0] != two_cpu_devices[1]

    def test_filter(self) -> None:
        """Test the device filter hides other devices."""
        set_config(RuntimeConfig(cpu_device_count=2, device_filter="cpu:1"))

        devices = get_devices()

        assert len(devices) == 1
        assert devices[0].index == 1

    def test_get_device_by_index(self) -> None:
        """Test lookup by position."""
        registry = get_registry()

        assert registry.get_device(0) == registry.devices[0]

    def test_get_device_bad_index(self) -> None:
        """Test out of range positions raise."""
        with pytest.raises(DeviceNotFoundError):
            get_registry().get_device(99)

    def test_get_device_by_filter(self) -> None:
        """Test lookup by filter string."""
        device = get_registry().get_device("cpu")

        assert device.is_cpu

    def test_get_device_no_match(self) -> None:
        """Test unmatched filters raise with the available devices."""
        with pytest.raises(DeviceNotFoundError) as exc_info:
            get_registry().get_device("cpu:42")

        assert exc_info.value.available

    def test_get_devices_by_type(self) -> None:
        """Test narrowing by device type."""
        assert all(d.is_cpu for d in get_devices(DeviceType.CPU))
        assert all(d.is_cpu for d in get_devices("cpu"))

    def test_matches_filter(self) -> None:
        """Test filter term matching."""
        cpu1 = _fake_device(DeviceType.CPU, 1)
        gpu0 = _fake_device(DeviceType.GPU, 0)

        assert matches_filter(cpu1, "cpu")
        assert matches_filter(cpu1, "cpu:1")
        assert not matches_filter(cpu1, "cpu:0")
        assert matches_filter(gpu0, "gpu")
        assert matches_filter(gpu0, "cuda:0")
        assert matches_filter(gpu0, "*")
        assert not matches_filter(gpu0, "cpu")
        assert not matches_filter(gpu0, "cuda:x")


class TestSelectors:
    """Tests for device selectors."""

    def test_builtin_selectors(self) -> None:
        """Test type selectors reject other types."""
        cpu = _fake_device(DeviceType.CPU)
        gpu = _fake_device(DeviceType.GPU)
        acc = _fake_device(DeviceType.ACCELERATOR)

        assert cpu_selector(cpu) >= 0
        assert cpu_selector(gpu) == REJECT
        assert gpu_selector(gpu) >= 0
        assert gpu_selector(cpu) == REJECT
        assert accelerator_selector(acc) >= 0
        assert accelerator_selector(cpu) == REJECT

    def test_default_selector_prefers_gpu(self) -> None:
        """Test the default selector picks the GPU over the CPU."""
        cpu = _fake_device(DeviceType.CPU)
        gpu = _fake_device(DeviceType.GPU)

        assert select_device(default_selector, [cpu, gpu]) is gpu

    def test_usm_selector(self) -> None:
        """Test devices without USM device allocations are rejected."""
        plain = _fake_device(DeviceType.GPU)
        usm = _fake_device(DeviceType.CPU, 0, Aspect.USM_DEVICE_ALLOCATIONS)

        assert usm_selector(plain) == REJECT
        assert select_device(usm_selector, [plain, usm]) is usm

    def test_usm_selector_finds_cpu(self) -> None:
        """Test the USM selector accepts the built-in CPU device."""
        assert select_device(usm_selector).has(Aspect.USM_DEVICE_ALLOCATIONS)

    def test_aspect_selector(self) -> None:
        """Test required and excluded aspects."""
        fp64 = _fake_device(DeviceType.CPU, 0, Aspect.FP64)
        fp16 = _fake_device(DeviceType.CPU, 1, Aspect.FP16, Aspect.FP64)

        selector = aspect_selector(Aspect.FP64, excluded=[Aspect.FP16])

        assert selector(fp64) >= 0
        assert selector(fp16) == REJECT
        assert select_device(selector, [fp16, fp64]) is fp64

    def test_ties_go_to_enumeration_order(self) -> None:
        """Test equal scores keep the first device."""
        first = _fake_device(DeviceType.CPU, 0)
        second = _fake_device(DeviceType.CPU, 1)

        assert select_device(cpu_selector, [first, second]) is first

    def test_custom_selector(self) -> None:
        """Test any callable can score devices."""
        first = _fake_device(DeviceType.CPU, 0)
        second = _fake_device(DeviceType.CPU, 1)

        def prefer_second(device: Device) -> int:
            return device.index

        assert select_device(prefer_second, [first, second]) is second

    def test_everything_rejected(self) -> None:
        """Test rejection of every device raises."""
        cpu = _fake_device(DeviceType.CPU)

        with pytest.raises(DeviceNotFoundError) as exc_info:
            select_device(gpu_selector, [cpu])

        assert "gpu_selector" in str(exc_info.value)

    def test_device_passthrough(self, cpu_device: Device) -> None:
        """Test a Device is returned as is."""
        assert select_device(cpu_device) is cpu_device

    def test_filter_string(self, cpu_device: Device) -> None:
        """Test a filter string selects through the registry."""
        assert select_device("cpu:0") == cpu_device

    def test_bad_selector_type(self) -> None:
        """Test unsupported selector types raise TypeError."""
        with pytest.raises(TypeError):
            select_device(42)  # type: ignore[arg-type]
