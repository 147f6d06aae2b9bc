"""Command line interface for inspecting configuration loading"""
from . import settings_conf, DEFAULTS
from pathlib import Path

SECRET_KEYS = {'wallet_rpc_password', 'processor_api_key', 'processor_webhook_secret',
               'notification_bot_token', 'jwt_secret'}

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key in SECRET_KEYS and value:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    example = Path("settings.conf.example")
    if not example.exists():
        with open(example, "w") as f:
            f.write("[DEFAULT]\n")
            for key, value in DEFAULTS.items():
                f.write(f"{key} = {value}\n")
        print(f"\nWrote {example}")

if __name__ == "__main__":
    main()
