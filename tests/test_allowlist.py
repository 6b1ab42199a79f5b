"""Tests for the cleartext allowlist sinks."""

from __future__ import annotations

import threading
import xml.etree.ElementTree as ET

from localai.allowlist import CONFIG_FILENAME, MemoryAllowlist, NetworkSecurityConfigFile


class TestMemoryAllowlist:
    def test_register_and_check(self):
        allowlist = MemoryAllowlist()
        assert allowlist.is_allowed("10.0.0.1") is False
        allowlist.register_host("10.0.0.1")
        allowlist.register_host("10.0.0.1")
        assert allowlist.is_allowed("10.0.0.1") is True
        assert allowlist.hosts == frozenset({"10.0.0.1"})


class TestNetworkSecurityConfigFile:
    def test_writes_every_registered_host(self, tmp_path):
        allowlist = NetworkSecurityConfigFile(tmp_path)
        allowlist.register_host("192.168.1.20")
        allowlist.register_host("192.168.1.7")

        path = tmp_path / CONFIG_FILENAME
        root = ET.parse(path).getroot()
        assert root.tag == "network-security-config"
        domain_config = root.find("domain-config")
        assert domain_config.get("cleartextTrafficPermitted") == "true"
        domains = [d.text for d in domain_config.findall("domain")]
        assert domains == ["192.168.1.20", "192.168.1.7"]
        assert all(d.get("includeSubdomains") == "true" for d in domain_config.findall("domain"))

    def test_explicit_file_path(self, tmp_path):
        target = tmp_path / "conf" / "nsc.xml"
        allowlist = NetworkSecurityConfigFile(target)
        allowlist.register_host("10.0.0.1")
        assert target.exists()
        assert allowlist.is_allowed("10.0.0.1")

    def test_write_failure_keeps_memory_state(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        allowlist = NetworkSecurityConfigFile(blocker / "nsc.xml")
        allowlist.register_host("10.0.0.1")
        assert allowlist.is_allowed("10.0.0.1")

    def test_concurrent_registrations_all_reach_the_file(self, tmp_path):
        allowlist = NetworkSecurityConfigFile(tmp_path)
        barrier = threading.Barrier(8)

        def worker(n: int) -> None:
            barrier.wait()
            for i in range(10):
                allowlist.register_host(f"10.0.{n}.{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        root = ET.parse(tmp_path / CONFIG_FILENAME).getroot()
        written = {d.text for d in root.find("domain-config").findall("domain")}
        assert written == allowlist.hosts
        assert len(written) == 80
