"""Command line interface for checking configuration loading"""
from . import get_settings, DEFAULTS
from pathlib import Path

def main():
    """Display loaded configuration"""
    settings = get_settings()

    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings.items():
        marker = "" if str(value) != DEFAULTS.get(key) else " (default)"
        print(f"{key}: {value}{marker}")

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
