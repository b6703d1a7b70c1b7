import json
from datetime import datetime, timedelta

import pytest

import system_indexer
from command_runner import CommandResult
from system_indexer import (
    SystemIndexer,
    detect_platform,
    get_cpu_features,
    get_gpu_infos,
    parse_cpu_flags,
    parse_cpuinfo,
    parse_df_output,
    parse_lsblk_output,
    parse_meminfo,
    parse_os_release,
    parse_ps_output,
)

OS_RELEASE = '''PRETTY_NAME="Ubuntu 25.04"
NAME="Ubuntu"
VERSION_ID="25.04"
VERSION="25.04 (Plucky Puffin)"
ID=ubuntu
'''

CPUINFO = """processor\t: 0
vendor_id\t: GenuineIntel
cpu family\t: 6
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
stepping\t: 10
cpu MHz\t\t: 1992.000
cache size\t: 8192 KB
physical id\t: 0
core id\t\t: 0
cpu cores\t: 4

processor\t: 1
vendor_id\t: GenuineIntel
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
cpu MHz\t\t: 2001.000
physical id\t: 0
core id\t\t: 0
cpu cores\t: 4

processor\t: 2
physical id\t: 0
core id\t\t: 1
cpu cores\t: 4
"""


@pytest.mark.parametrize("raw, expected", [
    ("linux", "linux"),
    ("win32", "windows"),
    ("cygwin", "windows"),
    ("darwin", "mac"),
    ("freebsd14", "freebsd"),
    ("aix7", "aix"),
    ("sunos5", "sunos"),
    ("plan9", "unknown"),
])
def test_detect_platform(raw, expected):
    assert detect_platform(raw) == expected


def test_os_release_pretty_name_and_version():
    assert parse_os_release(OS_RELEASE) == "Ubuntu 25.04 (25.04 (Plucky Puffin))"


def test_os_release_kubuntu_hostname():
    assert parse_os_release(OS_RELEASE, "kubuntu-desk") == 'Kubuntu 25.04 (Ubuntu 25.04 "Plucky")'


def test_os_release_pretty_name_only():
    assert parse_os_release('PRETTY_NAME="Arch Linux"\n') == "Arch Linux"
    assert parse_os_release("") is None


def test_cpuinfo():
    cpu = parse_cpuinfo(CPUINFO)

    assert cpu["model"] == "Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz"
    assert cpu["vendor"] == "GenuineIntel"
    assert cpu["family"] == "6"
    assert cpu["stepping"] == "10"
    assert cpu["cache"] == "8192 KB"
    assert cpu["frequency"] == "1992 MHz"
    assert cpu["threads"] == 3
    assert cpu["cores"] == 2


def test_cpuinfo_without_topology_uses_threads():
    cpu = parse_cpuinfo("processor : 0\nprocessor : 1\n")
    assert cpu["threads"] == 2
    assert cpu["cores"] == 2
    assert cpu["model"] == "Unknown"


def test_meminfo_is_in_bytes():
    info = parse_meminfo("MemTotal:       16384 kB\nMemAvailable:    8192 kB\nHugePages_Total:       0\n")
    assert info["MemTotal"] == 16384 * 1024
    assert info["MemAvailable"] == 8192 * 1024
    assert info["HugePages_Total"] == 0


def test_df_output_columns():
    out = (
        "Filesystem     Mounted on     Size  Used Avail Use%\n"
        "/dev/nvme0n1p2 /              468G  210G  235G  48%\n"
        "tmpfs          /run           1.6G  2.3M  1.6G   1%\n"
        "/dev/nvme0n1p1 /boot/efi      511M  6.1M  505M   2%\n"
    )
    disks = parse_df_output(out)

    assert [d["mount"] for d in disks] == ["/", "/boot/efi"]
    assert disks[0] == {
        "mount": "/",
        "total": "468G",
        "used": "210G",
        "available": "235G",
        "used_percent": 48,
        "filesystem": "/dev/nvme0n1p2",
    }


def test_df_plain_layout_uses_last_column():
    out = (
        "Filesystem      Size  Used Avail Capacity iused ifree %iused  Mounted on\n"
        "/dev/disk3s1   460Gi  12Gi 300Gi     4%  356k  3.1G    0%   /\n"
        "devfs          200Ki 200Ki   0Bi   100%   692     0  100%   /dev\n"
    )
    disks = parse_df_output(out)

    assert disks[0]["mount"] == "/"
    assert disks[0]["total"] == "460Gi"
    assert disks[0]["used_percent"] == 4
    assert disks[1]["mount"] == "/dev"


def test_df_nothing_usable_gives_placeholder():
    disks = parse_df_output("")
    assert disks == [{
        "mount": "/",
        "total": "Unknown",
        "used": "Unknown",
        "available": "Unknown",
        "used_percent": 0,
        "filesystem": "Unknown",
    }]


def test_lsblk_output():
    out = (
        "loop0     4K                          0\n"
        "nvme0n1 476.9G Samsung SSD 970 EVO Plus 1TB 0\n"
        "sda       1.8T ST2000DM008-2FR102       1\n"
        "sdb        32G                         1\n"
    )
    disks = parse_lsblk_output(out)

    assert disks == [
        {"device": "/dev/nvme0n1", "size": "476.9G", "model": "Samsung SSD 970 EVO Plus 1TB", "type": "SSD"},
        {"device": "/dev/sda", "size": "1.8T", "model": "ST2000DM008-2FR102", "type": "HDD"},
        {"device": "/dev/sdb", "size": "32G", "model": "Unknown", "type": "HDD"},
    ]


def test_ps_output_top_processes():
    out = (
        "alice  4242 12.0 25.0 9000000 4000000 ?  Sl 10:00 5:00 /usr/lib/firefox/firefox -contentproc\n"
        "alice  1111  1.0 10.5 2000000 1000000 ?  Sl 10:00 1:00 /opt/an-application-with-a-really-long-name/bin/an-application-with-a-really-long-name\n"
        "root    1    0.0  0.1  100000   10000 ?  Ss 09:00 0:01 /sbin/init\n"
        "root    2    0.0  0.0       0       0 ?  S  09:00 0:00 [kthreadd]\n"
        "short line\n"
    )
    procs = parse_ps_output(out, total_memory=16 * 1024 ** 3)

    assert len(procs) == 3
    assert procs[0] == {
        "pid": "4242",
        "name": "firefox",
        "memory_usage": "25.0%",
        "memory_percent": 25.0,
        "memory_absolute": "4 GiB",
    }
    assert procs[1]["name"] == "an-application-with-a-really-l..."
    assert procs[2]["name"] == "init"


def test_gpu_infos_prefers_nvidia_smi(monkeypatch):
    calls = []

    def fake_run(args, timeout=None, shell=False, env=None):
        calls.append(args)
        return CommandResult(True, "0, NVIDIA A100, 40960, 0, 40960, 0, 30, 550.54\n", "", 0)

    monkeypatch.setattr(system_indexer, "run_command", fake_run)
    gpus = get_gpu_infos("linux")

    assert gpus[0]["name"] == "NVIDIA A100"
    assert gpus[0]["memory_total"] == "40 GiB"
    assert len(calls) == 1


def test_gpu_infos_falls_back_to_lspci(monkeypatch):
    lspci = (
        "00:02.0 VGA compatible controller: Intel Corporation UHD Graphics 620 (rev 07) (prog-if 00 [VGA controller])\n"
        "\tSubsystem: Lenovo UHD Graphics 620\n"
        "\tKernel driver in use: i915\n"
    )

    def fake_run(args, timeout=None, shell=False, env=None):
        if shell:
            assert args == system_indexer.LSPCI_COMMAND
            return CommandResult(True, lspci, "", 0)
        return CommandResult(False, "", "not found", 127)

    monkeypatch.setattr(system_indexer, "run_command", fake_run)
    gpus = get_gpu_infos("linux")

    assert gpus == [{
        "index": 0,
        "name": "Intel Corporation UHD Graphics 620",
        "bus": "00:02.0",
        "revision": "07",
        "driver": "i915",
    }]


def test_gpu_infos_lspci_failure_is_empty(monkeypatch):
    monkeypatch.setattr(
        system_indexer, "run_command",
        lambda args, timeout=None, shell=False, env=None: CommandResult(False, "", "", 127),
    )
    assert get_gpu_infos("linux") == []


def test_gpu_infos_mac(monkeypatch):
    payload = json.dumps({"SPDisplaysDataType": [{"_name": "Apple M3"}]})
    monkeypatch.setattr(
        system_indexer, "run_command",
        lambda args, timeout=None, shell=False, env=None: CommandResult(True, payload, "", 0),
    )
    gpus = get_gpu_infos("mac")
    assert [g["name"] for g in gpus] == ["Apple M3"]


def test_gpu_infos_unknown_platform_runs_nothing(monkeypatch):
    def fake_run(*args, **kwargs):
        raise AssertionError("no command expected")

    monkeypatch.setattr(system_indexer, "run_command", fake_run)
    assert get_gpu_infos("sunos") == []


@pytest.fixture
def fake_collect(monkeypatch):
    counter = {"calls": 0}

    def _collect(self):
        counter["calls"] += 1
        return {"collected_at": datetime.now().isoformat(), "hostname": "box", "gpus": []}

    monkeypatch.setattr(SystemIndexer, "_collect", _collect)
    return counter


def test_indexer_uses_fresh_cache(tmp_path, fake_collect):
    indexer = SystemIndexer(cache_dir=tmp_path, quiet=True)
    first = indexer.load_or_collect()
    second = SystemIndexer(cache_dir=tmp_path, quiet=True).load_or_collect()

    assert first == second
    assert fake_collect["calls"] == 1
    assert (tmp_path / "system_info.json").exists()


def test_indexer_refreshes_stale_cache(tmp_path, fake_collect):
    stale = (datetime.now() - timedelta(hours=2)).isoformat()
    (tmp_path / "system_info.json").write_text(json.dumps({"collected_at": stale}))

    info = SystemIndexer(cache_dir=tmp_path, quiet=True).load_or_collect()

    assert info["hostname"] == "box"
    assert fake_collect["calls"] == 1


def test_indexer_force_refresh(tmp_path, fake_collect):
    indexer = SystemIndexer(cache_dir=tmp_path, quiet=True)
    indexer.load_or_collect()
    indexer.load_or_collect(force_refresh=True)
    assert fake_collect["calls"] == 2


def test_indexer_recovers_from_corrupt_cache(tmp_path, fake_collect):
    (tmp_path / "system_info.json").write_text("{not json")
    info = SystemIndexer(cache_dir=tmp_path, quiet=True).load_or_collect()

    assert info["hostname"] == "box"
    assert json.loads((tmp_path / "system_info.json").read_text())["hostname"] == "box"


@pytest.mark.parametrize("cached", [
    [],
    "text",
    {"collected_at": 5},
    {"hostname": "old"},
    {"collected_at": "2024-01-01T00:00:00+00:00"},
])
def test_indexer_recollects_on_wrong_shaped_cache(tmp_path, fake_collect, cached):
    cache_file = tmp_path / "system_info.json"
    cache_file.write_text(json.dumps(cached))

    info = SystemIndexer(cache_dir=tmp_path, quiet=True).load_or_collect()

    assert info["hostname"] == "box"
    assert fake_collect["calls"] == 1
    assert json.loads(cache_file.read_text())["hostname"] == "box"


def test_cache_dir_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("HUDAPP_CACHE_DIR", str(tmp_path / "hud"))
    indexer = SystemIndexer(quiet=True)
    assert indexer.cache_file == tmp_path / "hud" / "system_info.json"


X86_FLAGS = (
    "flags\t\t: fpu vme sse sse2 ht pni ssse3 fma sse4_1 sse4_2 aes avx "
    "avx2 sha_ni avx512f avx512dq\n"
)


def test_cpu_flags_x86():
    features = parse_cpu_flags("processor\t: 0\n" + X86_FLAGS + "processor\t: 1\nflags\t\t: fpu\n")

    for name in ("sse", "sse2", "sse3", "ssse3", "sse4_1", "sse4_2",
                 "avx", "avx2", "avx512", "fma", "aes", "sha"):
        assert features[name] is True, name
    assert features["neon"] is False
    assert features["flags"].startswith("fpu vme sse")


def test_cpu_flags_arm_features_line():
    features = parse_cpu_flags("processor\t: 0\nFeatures\t: fp asimd evtstrm aes pmull sha1 sha2 crc32\n")

    assert features["neon"] is True
    assert features["aes"] is True
    assert features["sha"] is True
    assert features["avx"] is False


def test_cpu_flags_avx_is_not_avx2():
    features = parse_cpu_flags("flags : sse sse2 avx\n")
    assert features["avx"] is True
    assert features["avx2"] is False
    assert features["avx512"] is False


def test_cpu_flags_without_flags_line():
    features = parse_cpu_flags("")
    assert features["flags"] == ""
    assert not any(v for k, v in features.items() if k != "flags")


def test_cpu_features_linux(tmp_path, monkeypatch):
    cpuinfo = tmp_path / "cpuinfo"
    cpuinfo.write_text("processor\t: 0\nmodel name\t: AMD Ryzen 7 5800X\n" + X86_FLAGS)
    monkeypatch.setattr(system_indexer, "PROC_CPUINFO", str(cpuinfo))

    info = get_cpu_features("linux")

    assert info["basic"]["model"] == "AMD Ryzen 7 5800X"
    assert info["basic"]["platform"] == "linux"
    assert info["basic"]["endianness"] in ("little", "big")
    assert info["features"]["avx2"] is True


def test_cpu_features_unreadable_cpuinfo(tmp_path, monkeypatch):
    monkeypatch.setattr(system_indexer, "PROC_CPUINFO", str(tmp_path / "missing"))
    info = get_cpu_features("linux")
    assert info["features"]["flags"] == ""


def test_cpu_features_windows_assumes_sse2(monkeypatch):
    monkeypatch.setattr(system_indexer.platform, "machine", lambda: "AMD64")
    features = get_cpu_features("windows")["features"]

    assert features["sse"] is True
    assert features["sse2"] is True
    assert features["avx"] is False
