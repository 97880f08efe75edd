"""Tests for the govc wrapper."""

from pathlib import Path

import pytest

from fcos_deploy.govc import GovcClient
from fcos_deploy.models import CertificateTrustError, MissingCredentialsError


class TestCredentials:
    def test_all_missing(self):
        with pytest.raises(MissingCredentialsError, match="GOVC_URL, GOVC_USERNAME, GOVC_PASSWORD"):
            GovcClient()

    def test_partially_missing(self, govc_env, monkeypatch):
        monkeypatch.delenv("GOVC_PASSWORD")
        with pytest.raises(MissingCredentialsError, match="GOVC_PASSWORD"):
            GovcClient()

    def test_complete(self, govc_env):
        client = GovcClient()
        assert client.env["GOVC_URL"] == "vcenter.example.com"


class TestCertificateTrust:
    """Test cases for the vCenter certificate fallback."""

    def test_trusted_by_govc(self, govc_env, fake_tools):
        client = GovcClient()

        client.ensure_trusted_certificate()

        assert fake_tools.govc_verbs() == ["about.cert"]
        assert "GOVC_TLS_CA_CERTS" not in client.overrides

    def test_explicit_ca_certs(self, govc_env, fake_tools, monkeypatch):
        fake_tools.govc_failures.add("about.cert")
        monkeypatch.setenv("GOVC_TLS_CA_CERTS", "/etc/ssl/vcenter.pem")
        client = GovcClient()

        client.ensure_trusted_certificate()

        assert client.env["GOVC_TLS_CA_CERTS"] == "/etc/ssl/vcenter.pem"

    def test_home_certificate_is_exported(self, govc_env, fake_tools, clean_env):
        fake_tools.govc_failures.add("about.cert")
        cert = clean_env / ".govmomi" / "certificates" / "vcenter.example.com.pem"
        cert.parent.mkdir(parents=True)
        cert.write_text("-----BEGIN CERTIFICATE-----\n")
        client = GovcClient()

        client.ensure_trusted_certificate()

        assert client.overrides["GOVC_TLS_CA_CERTS"] == str(cert)
        assert client.env["GOVC_TLS_CA_CERTS"] == str(cert)

    def test_no_certificate_anywhere(self, govc_env, fake_tools, clean_env):
        fake_tools.govc_failures.add("about.cert")
        client = GovcClient()

        with pytest.raises(CertificateTrustError) as exc:
            client.ensure_trusted_certificate()

        assert "govc about.cert -k -show | tee" in str(exc.value)
        assert str(clean_env / ".govmomi" / "certificates") in str(exc.value)


class TestLibrary:
    def test_library_exists_matches_exact_name(self, govc_env, fake_tools):
        fake_tools.libraries = ["fcos-testing", "templates"]
        client = GovcClient()

        assert not client.library_exists("fcos")
        assert client.library_exists("templates")

    def test_library_item_exists(self, govc_env, fake_tools):
        fake_tools.library_items = ["coreos-stable-40.20240416.3.1"]
        client = GovcClient()

        assert client.library_item_exists("fcos", "coreos-stable-40.20240416.3.1")
        assert not client.library_item_exists("fcos", "coreos-stable-39.20240322.3.1")
        assert fake_tools.commands("govc")[-1] == ["govc", "library.ls", "/fcos/*"]

    def test_library_import_and_deploy(self, govc_env, fake_tools):
        client = GovcClient()

        client.library_import("fcos", "coreos-stable-40", Path("/downloads/image.ova"))
        client.library_deploy("fcos", "coreos-stable-40", "fcos-web")

        assert fake_tools.commands("govc") == [
            ["govc", "library.import", "-n", "coreos-stable-40", "fcos", "/downloads/image.ova"],
            ["govc", "library.deploy", "fcos/coreos-stable-40", "fcos-web"],
        ]


class TestDevices:
    def test_detach_keep_reports_failure(self, govc_env, fake_tools):
        fake_tools.govc_failures.add("device.remove")
        client = GovcClient()

        assert client.device_detach_keep("fcos-web", "disk-1000-1") is False
        assert fake_tools.commands("govc")[-1] == ["govc", "device.remove", "-vm", "fcos-web", "-keep", "disk-1000-1"]

    def test_extra_config_from_file(self, govc_env, fake_tools, tmp_path):
        client = GovcClient()

        client.vm_set_extra_config_file("fcos-web", "guestinfo.ignition.config.data", tmp_path / "web.ign.gzip.b64")

        assert fake_tools.commands("govc")[-1] == [
            "govc",
            "vm.change",
            "-vm",
            "fcos-web",
            "-f",
            f"guestinfo.ignition.config.data={tmp_path / 'web.ign.gzip.b64'}",
        ]
