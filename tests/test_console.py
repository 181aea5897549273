import asyncio

from rtclink.endpoint.console import run_app_console, run_device_console
from rtclink.endpoint.device import DeviceEndpoint
from rtclink.errors import PreconditionError
from rtclink.signaling.session import Connectivity
from rtclink.transport.memory import InMemoryBroker, LocalTransport
from rtclink.utils.settings import EndpointSettings


def scripted(*lines: str):
    pending = list(lines)

    async def prompt(text: str) -> str:
        if not pending:
            raise EOFError
        return pending.pop(0)

    return prompt


def test_device_console_drives_manual_session(capsys) -> None:
    async def scenario():
        device = DeviceEndpoint(EndpointSettings(), LocalTransport(InMemoryBroker(), "device"))
        await device.start()
        await run_device_console(device, scripted("ready s-42", "candidate", "connected", "status", "bye", "bye", "quit"))
        session = device.session
        await device.stop()
        return session

    session = asyncio.run(scenario())
    output = capsys.readouterr().out

    assert session.session_id == "s-42"
    assert session.connectivity is Connectivity.CLOSED
    assert "Ready announced for session s-42" in output
    assert '"connectivity": "connected"' in output
    assert "Cannot do that now: no active session" in output


def test_app_console_reports_preconditions(capsys) -> None:
    class Stub:
        def send_offer(self):
            raise PreconditionError("no active session")

    asyncio.run(run_app_console(Stub(), scripted("3", "9", "0")))
    output = capsys.readouterr().out

    assert "Cannot do that now: no active session" in output
    assert "Unknown choice: 9" in output
    assert "1. Create P2P session" in output
