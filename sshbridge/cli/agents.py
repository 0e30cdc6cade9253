"""
Agents CLI handler.

Path: sshbridge/cli/agents.py

Handles: sshbridge agents
"""

from sshbridge.ssh.agent import AgentDetector


def handle_agents(args) -> int:
    """List every reachable agent; the first one is used by default."""
    agents = AgentDetector.detect_all()

    if not agents:
        print("No SSH agents found")
        print("Start ssh-agent or set SSH_AUTH_SOCK")
        return 1

    print(f"SSH agents ({len(agents)}):")
    for index, agent in enumerate(agents):
        marker = "*" if index == 0 else " "
        print(f"  {marker} {agent.type.value:<12} {agent.socket_path}")
    return 0
