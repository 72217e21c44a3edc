"""Wire-level types shared by the chat client and its tests."""
