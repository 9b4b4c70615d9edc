"""Tests for battery, UPS and power-draw collection."""

import plistlib
from datetime import datetime

import pytest

from conftest import FakeClock, FakeRunner
from menustat.cpu import CpuCollector, CpuTicks
from menustat.macmon import MACMON_ARGS, MACMON_PATHS, parse_macmon_output
from menustat.models import PowerSource
from menustat.power import (
    IOREG,
    PMSET,
    SYSTEM_PROFILER,
    BatteryCollector,
    PowerCollector,
    PowerSourceRegistry,
    UPSCollector,
    adapter_watts,
    battery_from_description,
    battery_health,
    estimate_power,
    parse_drawing_from,
    parse_pmset_sources,
    parse_power_profile,
    parse_smart_battery,
    power_from_macmon,
)

PS_ON_AC = """Now drawing from 'AC Power'
 -InternalBattery-0 (id=4653155)\t87%; charging; 1:05 remaining present: true
"""

PS_ON_UPS = """Now drawing from 'UPS Power'
 -Back-UPS ES 700 (id=1234)\t64%; discharging; 0:42 remaining present: true
"""

PS_LAPTOP_ON_BATTERY = """Now drawing from 'Battery Power'
 -InternalBattery-0 (id=4653155)\t55%; discharging; 3:10 remaining present: true
"""

SMART_BATTERY = plistlib.dumps(
    [
        {
            "Temperature": 3050,
            "CycleCount": 123,
            "Voltage": 12500,
            "Amperage": 2**64 - 1500,
            "ExternalConnected": True,
            "AdapterDetails": {"Watts": 67},
            "PowerTelemetryData": {"SystemPowerIn": 18500},
        }
    ]
).decode()

POWER_PROFILE = """Power:

    Battery Information:

      Model Information:
          Manufacturer: SMP
          Device Name: bq40z651
      Charge Information:
          Fully Charged: No
          Charging: No
          State of Charge (%): 55
      Health Information:
          Cycle Count: 412
          Condition: Normal
          Maximum Capacity: 74%
"""

FIXED_TIME = datetime(2024, 5, 1, 12, 0, 0)


def idle_cpu() -> CpuCollector:
    return CpuCollector(lambda: CpuTicks(0, 0, 0, 0))


class TestPmsetParsing:
    """Tests for pmset output parsing."""

    @pytest.mark.parametrize(
        "output, expected",
        [
            (PS_ON_AC, PowerSource.AC),
            (PS_ON_UPS, PowerSource.UPS),
            (PS_LAPTOP_ON_BATTERY, PowerSource.BATTERY),
            ("Now drawing from 'Generator'", PowerSource.UNKNOWN),
            ("", PowerSource.UNKNOWN),
        ],
    )
    def test_drawing_from(self, output, expected):
        assert parse_drawing_from(output) is expected

    def test_internal_battery_charging(self):
        (battery,) = parse_pmset_sources(PS_ON_AC)

        assert battery["Type"] == "InternalBattery"
        assert battery["Current Capacity"] == 87.0
        assert battery["Is Charging"] is True
        assert battery["Time to Full Charge"] == 65.0
        assert battery["Power Source State"] == "AC Power"

    def test_ups_discharging(self):
        (ups,) = parse_pmset_sources(PS_ON_UPS)

        assert ups["Type"] == "UPS"
        assert ups["Name"] == "Back-UPS ES 700"
        assert ups["Time to Empty"] == 42.0
        assert ups["Power Source State"] == "Battery Power"

    def test_no_estimate_is_sentinel(self):
        output = " -InternalBattery-0 (id=1)\t100%; charged; 0:00 remaining present: true\n"
        # "(no estimate)" style lines carry no H:MM
        output_no_estimate = " -InternalBattery-0 (id=1)\t40%; discharging; (no estimate) present: true\n"

        assert parse_pmset_sources(output)[0]["Time to Empty"] == 0.0
        assert parse_pmset_sources(output_no_estimate)[0]["Time to Empty"] == -1.0


class TestSmartBattery:
    """Tests for ioreg smart-battery enrichment."""

    def test_fields(self):
        fields = parse_smart_battery(SMART_BATTERY)

        assert fields["Temperature"] == pytest.approx((30.5 + 273.15) * 10)
        assert fields["Cycle Count"] == 123.0
        assert fields["Amperage"] == -1500.0
        assert fields["InstantaneousPower"] == 18.5
        assert fields["Power Source State"] == "AC Power"

    def test_garbage_yields_nothing(self):
        assert parse_smart_battery("not a plist") == {}

    def test_power_profile(self):
        fields = parse_power_profile(POWER_PROFILE)

        assert fields == {"Cycle Count": 412, "MaxCapacity": 74}

    def test_power_profile_without_battery(self):
        assert parse_power_profile("Power:\n\n    AC Charger Information:\n\n      Connected: Yes\n") == {}


class TestBattery:
    """Tests for the battery collector."""

    def test_temperature_converted_to_celsius(self):
        battery = battery_from_description(
            {"Type": "InternalBattery", "Is Present": True, "Temperature": 3031.5}
        )

        assert battery.temperature == pytest.approx(30.0)

    def test_missing_temperature_reads_zero(self):
        assert battery_from_description({"Is Present": True}).temperature == 0.0

    def test_registry_battery(self):
        runner = FakeRunner(
            {
                (PMSET, ("-g", "ps")): PS_ON_AC,
                (IOREG, ("-r", "-c", "AppleSmartBattery", "-a")): SMART_BATTERY,
            }
        )
        battery = BatteryCollector(PowerSourceRegistry(runner)).sample()

        assert battery.present
        assert battery.is_charging
        assert battery.charge_level == 87.0
        assert battery.time_remaining == 65.0
        assert battery.cycle_count == 123
        assert battery.temperature == pytest.approx(30.5)
        assert battery.amperage == 1500.0
        assert battery.health == "Good"
        assert battery.max_capacity == 100

    def test_discharge_current_is_a_magnitude(self):
        battery = battery_from_description(
            {"Type": "InternalBattery", "Is Present": True, "Is Charging": False, "Amperage": -2100.0}
        )

        assert battery.amperage == 2100.0
        assert not battery.is_charging

    def test_profile_capacity_and_cycles(self):
        runner = FakeRunner(
            {
                (PMSET, ("-g", "ps")): PS_LAPTOP_ON_BATTERY,
                (IOREG, ("-r", "-c", "AppleSmartBattery", "-a")): SMART_BATTERY,
                (SYSTEM_PROFILER, ("SPPowerDataType",)): POWER_PROFILE,
            }
        )
        battery = BatteryCollector(PowerSourceRegistry(runner)).sample()

        assert battery.cycle_count == 412
        assert battery.max_capacity == 74
        assert battery.health == "Fair"

    def test_capacity_from_registry_ratio(self):
        smart = plistlib.dumps([{"AppleRawMaxCapacity": 2900, "DesignCapacity": 5000}]).decode()
        runner = FakeRunner(
            {(PMSET, ("-g", "ps")): PS_LAPTOP_ON_BATTERY, (IOREG, ("-r", "-c", "AppleSmartBattery", "-a")): smart}
        )
        battery = BatteryCollector(PowerSourceRegistry(runner)).sample()

        assert battery.max_capacity == 58
        assert battery.health == "Poor"

    @pytest.mark.parametrize(
        "capacity, health", [(100, "Good"), (80, "Good"), (79, "Fair"), (60, "Fair"), (59, "Poor")]
    )
    def test_health_thresholds(self, capacity, health):
        assert battery_health(capacity) == health

    def test_absent_battery_health_unknown(self):
        assert battery_from_description({"Is Present": False}).health == "Unknown"

    def test_no_battery_without_fallback(self):
        battery = BatteryCollector(PowerSourceRegistry(FakeRunner()), use_psutil=False).sample()

        assert not battery.present


class TestUPS:
    """Tests for the UPS collector."""

    def test_ups_on_battery(self):
        runner = FakeRunner({(PMSET, ("-g", "ps")): PS_ON_UPS, (PMSET, ("-g", "batt")): PS_ON_UPS})

        ups = UPSCollector(PowerSourceRegistry(runner)).sample()

        assert ups.present
        assert ups.name == "Back-UPS ES 700"
        assert ups.charge_level == 64.0
        assert ups.time_remaining == 42.0
        assert ups.power_source is PowerSource.UPS
        assert ups.is_on_battery

    def test_no_ups_keeps_power_source(self):
        runner = FakeRunner({(PMSET, ("-g", "ps")): PS_ON_AC, (PMSET, ("-g", "batt")): PS_ON_AC})

        ups = UPSCollector(PowerSourceRegistry(runner)).sample()

        assert not ups.present
        assert ups.power_source is PowerSource.AC

    def test_unknown_label_is_not_present(self):
        """Test a UPS whose power source cannot be read is reported absent."""
        output = PS_ON_UPS.split("\n", 1)[1]
        runner = FakeRunner({(PMSET, ("-g", "ps")): output})

        ups = UPSCollector(PowerSourceRegistry(runner)).sample()

        assert not ups.present
        assert ups.power_source is PowerSource.UNKNOWN
        assert (PMSET, ("-g", "batt")) in runner.calls

    def test_source_label_read_from_ps_output(self):
        runner = FakeRunner({(PMSET, ("-g", "ps")): PS_ON_UPS})

        ups = UPSCollector(PowerSourceRegistry(runner)).sample()

        assert ups.power_source is PowerSource.UPS
        assert (PMSET, ("-g", "batt")) not in runner.calls


class TestRegistryCache:
    """Tests for sharing one registry read across collectors."""

    def test_collectors_share_one_read(self):
        runner = FakeRunner(
            {
                (PMSET, ("-g", "ps")): PS_ON_AC,
                (IOREG, ("-r", "-c", "AppleSmartBattery", "-a")): SMART_BATTERY,
                (SYSTEM_PROFILER, ("SPPowerDataType",)): POWER_PROFILE,
            }
        )
        registry = PowerSourceRegistry(runner, clock=FakeClock())

        UPSCollector(registry).sample()
        BatteryCollector(registry).sample()
        PowerCollector(runner, registry=registry, cpu=idle_cpu()).sample()

        assert runner.calls.count((PMSET, ("-g", "ps"))) == 1
        assert runner.calls.count((IOREG, ("-r", "-c", "AppleSmartBattery", "-a"))) == 1
        assert runner.calls.count((SYSTEM_PROFILER, ("SPPowerDataType",))) == 1
        assert (PMSET, ("-g", "batt")) not in runner.calls

    def test_read_expires(self):
        runner = FakeRunner({(PMSET, ("-g", "ps")): PS_ON_UPS})
        clock = FakeClock()
        registry = PowerSourceRegistry(runner, clock=clock)

        registry.descriptions()
        clock.advance(0.5)
        registry.descriptions()
        clock.advance(1.0)
        registry.descriptions()

        assert runner.calls.count((PMSET, ("-g", "ps"))) == 2

    def test_callers_get_copies(self):
        registry = PowerSourceRegistry(FakeRunner({(PMSET, ("-g", "ps")): PS_ON_UPS}), clock=FakeClock())

        registry.descriptions()[0]["Name"] = "changed"

        assert registry.descriptions()[0]["Name"] == "Back-UPS ES 700"


class TestPowerTiers:
    """Tests for the three-tier power fallback."""

    def test_macmon_measured(self):
        path = MACMON_PATHS[0]
        runner = FakeRunner(
            {(path, tuple(MACMON_ARGS)): '{"cpu_power": 3.5, "gpu_power": 1.25, "sys_power": 14.0}\n'},
            executables=[path],
        )

        info = PowerCollector(runner, cpu=idle_cpu(), clock=lambda: FIXED_TIME).sample()

        assert info.cpu_power == 3.5
        assert info.gpu_power == 1.25
        assert info.total_system_power == 14.0
        assert info.is_estimate is False
        assert info.timestamp == FIXED_TIME

    def test_macmon_without_system_power_sums_components(self):
        info = power_from_macmon({"cpu_power": 3.0, "gpu_power": 1.0, "ane_power": 0.5, "ram_power": 0.5})

        assert info.total_system_power == 5.0
        assert info.is_estimate is True

    def test_macmon_skipped_when_not_installed(self):
        runner = FakeRunner({(PMSET, ("-g", "ps")): PS_ON_AC})

        PowerCollector(runner, cpu=idle_cpu()).sample()

        assert not any(call[0] in MACMON_PATHS for call in runner.calls)

    def test_adapter_tier(self):
        runner = FakeRunner(
            {
                (PMSET, ("-g", "ps")): PS_ON_AC,
                (IOREG, ("-r", "-c", "AppleSmartBattery", "-a")): plistlib.dumps(
                    [{"ExternalConnected": True, "AdapterDetails": {"Voltage": 20000, "Current": 3000}}]
                ).decode(),
            }
        )

        info = PowerCollector(runner, cpu=idle_cpu()).sample()

        assert info.total_system_power == pytest.approx(60.0)
        assert info.cpu_power == pytest.approx(24.0)
        assert info.gpu_power == pytest.approx(12.0)
        assert info.is_estimate is False

    def test_instantaneous_power_wins(self):
        descriptions = [
            {"Power Source State": "AC Power", "AdapterDetails": {"Watts": 96}, "InstantaneousPower": 21.0}
        ]

        assert adapter_watts(descriptions) == 21.0

    def test_adapter_ignored_on_battery(self):
        descriptions = [{"Power Source State": "Battery Power", "AdapterDetails": {"Watts": 96}}]

        assert adapter_watts(descriptions) is None

    def test_estimate_tier(self):
        info = PowerCollector(FakeRunner(), cpu=idle_cpu()).sample()

        assert info.is_estimate is True
        assert info.total_system_power == pytest.approx(5.0)


class TestEstimate:
    """Tests for the heuristic power model."""

    def test_bounds(self):
        assert estimate_power(0).total_system_power == 5.0
        assert estimate_power(100).total_system_power == 85.0

    def test_monotonic_in_load(self):
        totals = [estimate_power(load).total_system_power for load in range(0, 101, 10)]

        assert totals == sorted(totals)

    def test_shares(self):
        info = estimate_power(100)

        assert info.cpu_power == pytest.approx(85.0 * 0.5)
        assert info.gpu_power == pytest.approx(85.0 * 0.15)


def test_macmon_output_first_line():
    assert parse_macmon_output('\n{"cpu_power": 1}\n{"cpu_power": 2}\n') == {"cpu_power": 1}
    assert parse_macmon_output("garbage") is None
