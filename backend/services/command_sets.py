"""
Candidate commands per information category.

Each list is tried in order by CommandProber; the first command that
succeeds with non-empty output wins. Earlier entries are the most precise,
later entries cover older or minimal distributions (busybox, alpine).
"""

from typing import Dict, List, NamedTuple

from parsers.docker import PS_FORMAT

SYSTEM_COMMANDS: Dict[str, List[str]] = {
    "os_release": [
        "cat /etc/os-release",
        "lsb_release -a 2>/dev/null",
        "cat /etc/redhat-release",
        "uname -s",
    ],
    "hostname": ["hostname", "cat /etc/hostname", "uname -n"],
    "uptime": ["uptime -p", "uptime", "cat /proc/uptime"],
    "memory": ["free -b", "free", "cat /proc/meminfo"],
    "cpu": [
        "lscpu",
        "grep -m1 'model name' /proc/cpuinfo",
        "nproc",
    ],
    "kernel": ["uname -r", "cat /proc/version"],
    "architecture": ["uname -m", "arch", "dpkg --print-architecture"],
    "disk": ["df -h /", "df /"],
    "network": ["ip -o -4 addr show", "ip addr", "ifconfig -a"],
    "services": [
        "systemctl list-units --type=service --state=running --no-pager --no-legend",
        "service --status-all 2>/dev/null | grep '\\[ + \\]'",
        "rc-status --servicelist",
    ],
    "containers": [
        "docker ps --format '{{.Names}}|{{.Image}}|{{.Status}}'",
        "podman ps --format '{{.Names}}|{{.Image}}|{{.Status}}'",
    ],
    "load": ["cat /proc/loadavg", "uptime"],
    "users": ["who", "w -h", "users"],
    "environment": [
        "systemd-detect-virt",
        "cat /sys/class/dmi/id/product_name",
        "hostnamectl",
    ],
    "timezone": ["timedatectl show --property=Timezone --value", "cat /etc/timezone", "date +%Z"],
}


class PackageManager(NamedTuple):
    """How to detect one package manager and count its pending updates."""

    name: str
    check: str
    updates: str
    installed: str


# Priority order: first one whose check succeeds is used
PACKAGE_MANAGERS: List[PackageManager] = [
    PackageManager(
        "apt",
        "command -v apt",
        "apt list --upgradable 2>/dev/null | grep -v '^Listing'",
        "dpkg-query -f '.\\n' -W | wc -l",
    ),
    PackageManager(
        "yum",
        "command -v yum",
        "yum -q check-update 2>/dev/null | grep -v '^$' | wc -l",
        "rpm -qa | wc -l",
    ),
    PackageManager(
        "dnf",
        "command -v dnf",
        "dnf -q check-update 2>/dev/null | grep -v '^$' | wc -l",
        "rpm -qa | wc -l",
    ),
    PackageManager(
        "zypper",
        "command -v zypper",
        "zypper -q list-updates 2>/dev/null | grep -c '^v '",
        "rpm -qa | wc -l",
    ),
    PackageManager(
        "pacman",
        "command -v pacman",
        "pacman -Qu 2>/dev/null | wc -l",
        "pacman -Q | wc -l",
    ),
    PackageManager(
        "apk",
        "command -v apk",
        "apk version -l '<' 2>/dev/null | grep -v '^Installed' | wc -l",
        "apk info | wc -l",
    ),
]

# Container inventory
DOCKER_PS = f"docker ps -a --format '{PS_FORMAT}'"
DOCKER_LABELS = "docker inspect --format '{{{{json .Config.Labels}}}}' {container_id}"
DOCKER_NETWORKS = "docker inspect --format '{{{{json .NetworkSettings.Networks}}}}' {container_id}"
DOCKER_NETWORK_MODE = (
    "docker inspect --format '{{{{.HostConfig.NetworkMode}}}}|{{{{.NetworkSettings.MacAddress}}}}' "
    "{container_id}"
)
# All containers, running or stopped, one JSON object per line ("" when none exist)
DOCKER_INSPECT_ALL = "docker ps -aq | xargs -r docker inspect --format '{{json .}}'"

# Hypervisor guest addresses, one "## <domain>" block per VM
VIRSH_GUEST_ADDRESSES = (
    "command -v virsh >/dev/null && for vm in $(virsh list --all --name); do "
    "echo \"## $vm\"; virsh domifaddr \"$vm\" --source agent 2>/dev/null "
    "|| virsh domifaddr \"$vm\" 2>/dev/null; done"
)

IP_ADDR = "ip -o -4 addr show"
IP_LINK = "ip -o link show"

# Terminal sessions
TMUX_VERSION = "tmux -V"

# Lightweight health cycle: usage metrics only, no full discovery
HEALTH_COMMANDS: Dict[str, List[str]] = {
    "cpu": [
        "grep 'cpu ' /proc/stat | awk '{print ($2+$4)*100/($2+$3+$4+$5)}'",
        "vmstat 1 2 | tail -1 | awk '{print 100-$15}'",
    ],
    "memory": ["free -b", "free"],
    "disk": ["df -h /", "df /"],
    "load": ["cat /proc/loadavg", "uptime"],
    "processes": ["ps -e --no-headers | wc -l", "ls -d /proc/[0-9]* | wc -l"],
    "os_release": ["cat /etc/os-release", "uname -s"],
}
