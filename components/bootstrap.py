"""Bastion bootstrap script (EC2 user data).

The script runs on every fresh instance, including replacements, so each step
is safe to repeat: package installs are no-ops when present, downloads are
guarded, helper scripts are rewritten atomically and the setup log is only
appended to.
"""

SCRIPTS_DIR = "/home/ec2-user/scripts"
SETUP_LOG = "/var/log/bastion-setup.log"

DOCKER_COMPOSE_VERSION = "v2.24.1"
SESSION_MANAGER_PLUGIN_URL = (
    "https://s3.amazonaws.com/session-manager-downloads/plugin/latest/linux_64bit/"
    "session-manager-plugin.rpm"
)

PACKAGES = ("postgresql15", "docker", "git", "htop", "jq", "unzip")

CONNECT_DB_SCRIPT = """#!/bin/bash
if [ $# -ne 3 ]; then
  echo "Usage: ./connect-db.sh <database-endpoint> <username> <database-name>"
  echo "Example: ./connect-db.sh mydb.xyz.rds.amazonaws.com appuser appdb"
  exit 1
fi
psql "host=$1 user=$2 dbname=$3 sslmode=require"
"""

WATCH_LOGS_TEMPLATE = """#!/bin/bash
echo "Watching application logs..."
aws logs tail {log_group} --follow "$@"
"""


def _write_script(name: str, content: str) -> list[str]:
    path = f"{SCRIPTS_DIR}/{name}"
    return [
        f"cat > {path}.tmp << 'EOF'",
        content.rstrip("\n"),
        "EOF",
        f"chmod 755 {path}.tmp",
        f"mv -f {path}.tmp {path}",
    ]


def render_bootstrap(log_group_name: str) -> str:
    """Render the bastion user-data script.

    Args:
        log_group_name: Application log group tailed by ``watch-logs.sh``.
    """
    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        f"exec >> {SETUP_LOG} 2>&1",
        'echo "Bastion setup started at $(date)"',
        # System packages
        "dnf update -y",
        f"dnf install -y {' '.join(PACKAGES)}",
        # Container runtime
        "systemctl enable --now docker",
        "usermod -a -G docker ec2-user",
        "if [ ! -x /usr/local/bin/docker-compose ]; then",
        f'  curl -fsSL "https://github.com/docker/compose/releases/download/{DOCKER_COMPOSE_VERSION}/'
        'docker-compose-$(uname -s)-$(uname -m)" -o /usr/local/bin/docker-compose',
        "  chmod +x /usr/local/bin/docker-compose",
        "fi",
        # AWS CLI v2
        "if ! command -v aws > /dev/null 2>&1; then",
        "  workdir=$(mktemp -d)",
        '  curl -fsSL "https://awscli.amazonaws.com/awscli-exe-linux-x86_64.zip" -o "$workdir/awscliv2.zip"',
        '  unzip -q "$workdir/awscliv2.zip" -d "$workdir"',
        '  "$workdir/aws/install" --update',
        '  rm -rf "$workdir"',
        "fi",
        # Session management
        "systemctl enable --now amazon-ssm-agent || true",
        "if ! rpm -q session-manager-plugin > /dev/null 2>&1; then",
        f"  dnf install -y {SESSION_MANAGER_PLUGIN_URL}",
        "fi",
        # Operator helper scripts
        f"install -d -o ec2-user -g ec2-user {SCRIPTS_DIR}",
        *_write_script("connect-db.sh", CONNECT_DB_SCRIPT),
        *_write_script("watch-logs.sh", WATCH_LOGS_TEMPLATE.format(log_group=log_group_name)),
        f"chown -R ec2-user:ec2-user {SCRIPTS_DIR}",
        'echo "Bastion setup completed at $(date)"',
        f'echo "Available scripts in {SCRIPTS_DIR}:"',
        f"ls -la {SCRIPTS_DIR}",
    ]
    return "\n".join(lines) + "\n"
