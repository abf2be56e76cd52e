"""Unit tests for the bastion bootstrap script."""

from components.bootstrap import SCRIPTS_DIR, SETUP_LOG, render_bootstrap


class TestRenderBootstrap:
    def test_strict_bash_script(self):
        script = render_bootstrap("/ecs/app")
        assert script.startswith("#!/bin/bash\nset -euo pipefail\n")

    def test_setup_log_is_appended_not_truncated(self):
        script = render_bootstrap("/ecs/app")
        assert f"exec >> {SETUP_LOG}" in script
        assert f"> {SETUP_LOG}" not in script.replace(f">> {SETUP_LOG}", "")

    def test_downloads_are_guarded(self):
        script = render_bootstrap("/ecs/app")
        assert "if [ ! -x /usr/local/bin/docker-compose ]; then" in script
        assert "if ! command -v aws" in script
        assert "if ! rpm -q session-manager-plugin" in script

    def test_helper_scripts_written_atomically(self):
        script = render_bootstrap("/ecs/app")
        for name in ("connect-db.sh", "watch-logs.sh"):
            assert f"cat > {SCRIPTS_DIR}/{name}.tmp << 'EOF'" in script
            assert f"mv -f {SCRIPTS_DIR}/{name}.tmp {SCRIPTS_DIR}/{name}" in script

    def test_watch_logs_targets_application_log_group(self):
        script = render_bootstrap("/ecs/shop-prod-app")
        assert "aws logs tail /ecs/shop-prod-app --follow" in script

    def test_connect_db_requires_tls(self):
        assert "sslmode=require" in render_bootstrap("/ecs/app")

    def test_rendering_is_deterministic(self):
        assert render_bootstrap("/ecs/app") == render_bootstrap("/ecs/app")
