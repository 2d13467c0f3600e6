"""Tests for hardware-based server tuning."""

import pytest

from pg_deployer.tuning import (
    GB,
    MB,
    HardwareProfile,
    format_memory,
    parse_memtotal,
    parse_storage,
    tuned_settings,
)


class TestFormatMemory:
    @pytest.mark.parametrize(
        "value, expected",
        [(4 * GB, "4GB"), (int(1.5 * GB), "1GB"), (819 * MB, "819MB"), (512 * 1024, "512kB")],
    )
    def test_whole_units_rounded_down(self, value, expected):
        assert format_memory(value) == expected


class TestHardwareParsing:
    def test_memtotal(self):
        meminfo = "MemTotal:       16384000 kB\nMemFree:         8192000 kB\n"
        assert parse_memtotal(meminfo) == 16384000 * 1024
        assert parse_memtotal("") is None

    @pytest.mark.parametrize(
        "lsblk, storage",
        [
            ("NAME ROTA\nnvme0n1    0\n", "ssd"),
            ("NAME ROTA\nsda     1\nsdb     0\n", "ssd"),
            ("NAME ROTA\nsda     1\n", "hdd"),
            ("", "hdd"),
        ],
    )
    def test_storage(self, lsblk, storage):
        assert parse_storage(lsblk) == storage


class TestTunedSettings:
    def test_web_workload_on_mid_sized_ssd_host(self):
        settings = tuned_settings(HardwareProfile(16 * GB, 8, "ssd"))
        assert settings["shared_buffers"] == "4GB"
        assert settings["effective_cache_size"] == "12GB"
        assert settings["maintenance_work_mem"] == "819MB"
        assert settings["work_mem"] == "20MB"
        assert settings["max_connections"] == 200
        assert settings["wal_buffers"] == "16MB"
        assert settings["random_page_cost"] == 1.1
        assert settings["effective_io_concurrency"] == 200
        assert settings["max_worker_processes"] == 8
        assert settings["max_parallel_workers_per_gather"] == 4
        assert "huge_pages" not in settings

    def test_data_warehouse_on_large_spinning_host(self):
        settings = tuned_settings(HardwareProfile(64 * GB, 4, "hdd"), "dw")
        assert settings["shared_buffers"] == "25GB"
        assert settings["effective_cache_size"] == "51GB"
        assert settings["maintenance_work_mem"] == "2GB"
        assert settings["work_mem"] == "256MB"
        assert settings["max_connections"] == 40
        assert settings["random_page_cost"] == 4
        assert settings["effective_io_concurrency"] == 2
        assert settings["max_parallel_maintenance_workers"] == 2
        assert settings["huge_pages"] == "try"

    def test_small_host_hits_floors(self):
        settings = tuned_settings(HardwareProfile(1 * GB, 1))
        assert settings["shared_buffers"] == "256MB"
        assert settings["maintenance_work_mem"] == "64MB"
        assert settings["work_mem"] == "4MB"
        assert settings["max_connections"] == 25
        assert settings["wal_buffers"] == "7MB"
        assert settings["max_parallel_workers_per_gather"] == 0

    def test_desktop_is_conservative(self):
        settings = tuned_settings(HardwareProfile(8 * GB, 2), "desktop")
        assert settings["shared_buffers"] == "819MB"
        assert settings["effective_cache_size"] == "2GB"
        assert settings["work_mem"] == "4MB"
        assert settings["max_connections"] == 20

    def test_oltp_allows_more_connections(self):
        settings = tuned_settings(HardwareProfile(32 * GB, 16, "ssd"), "oltp")
        assert settings["max_connections"] == 300

    def test_unknown_workload(self):
        with pytest.raises(KeyError):
            tuned_settings(HardwareProfile(8 * GB, 2), "batch")
