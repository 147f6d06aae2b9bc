"""Command line interface for checking the wallet service connection"""
import sys

from . import client, NodeConnectionError, NodeAuthError, WalletError

def main(argv):
    """Ping the wallet service and optionally derive the address at an index"""
    try:
        print(f"Pinging wallet service at {client.url}...")
        client.ping()
        print("  Success!")

        if argv:
            index = int(argv[0])
            print(f"\nDeriving address at index {index}:")
            print(f"  {client.deriveaddress(index)}")

    except NodeAuthError as e:
        print(f"  Authentication failed: {e}")
        return 1
    except NodeConnectionError as e:
        print(f"  Connection failed: {e}")
        return 1
    except WalletError as e:
        print(f"  Wallet error: {e}")
        return 1
    return 0

if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
