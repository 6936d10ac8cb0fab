#!/usr/bin/env python3
"""
Stop generation example using LocalChat.

Starts a long reply, stops it after two seconds and shows that the partial
text is kept in the conversation.
"""

import asyncio

from localchat import AsyncTransport, RuntimeProvider, SessionController, project


async def main():
    async with AsyncTransport(base_url="http://localhost:11434") as transport:
        controller = SessionController(RuntimeProvider(transport))

        print("Stop Generation Example")
        print("=" * 50)

        if not await controller.load_model():
            print(controller.state.load_error)
            return

        operation = controller.send("Describe every region of Portugal in detail.")
        await asyncio.sleep(2)
        controller.stop_generation()
        await operation.wait()

        # Render what a chat screen would show
        for bubble in project(controller.state).bubbles:
            print(f"[{bubble.align}] {bubble.role}: {bubble.text}\n")

        await controller.aclose()


if __name__ == "__main__":
    asyncio.run(main())
