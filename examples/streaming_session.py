#!/usr/bin/env python3
"""
Streaming session example using LocalChat.

Loads the default model from a local daemon, printing download progress,
then streams one reply token by token.
"""

import asyncio

from localchat import AsyncTransport, RuntimeProvider, SessionController, TextDelta


async def main():
    async with AsyncTransport(base_url="http://localhost:11434") as transport:
        controller = SessionController(RuntimeProvider(transport))

        print("Streaming Session Example")
        print("=" * 50)

        controller.store.subscribe(
            lambda state: print(f"\r{state.phase.value}: {state.progress:.0%}", end="", flush=True)
            if state.phase.is_loading
            else None
        )
        if not await controller.load_model():
            print(f"\n{controller.state.load_error}")
            return
        print("\n")

        print("Question: Suggest a weekend trip from Lisbon.\n")
        print("Response: ", end="", flush=True)
        controller.add_event_observer(
            lambda event: print(event.text, end="", flush=True)
            if isinstance(event, TextDelta)
            else None
        )

        operation = controller.send("Suggest a weekend trip from Lisbon.")
        await operation.wait()
        print("\n")

        if controller.state.generation_error:
            print(controller.state.generation_error)

        await controller.aclose()


if __name__ == "__main__":
    asyncio.run(main())
