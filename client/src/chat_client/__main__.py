"""Run the chat client."""

from . import ChatClient


def main() -> None:
    client = ChatClient()
    client.run()


if __name__ == "__main__":
    main()
