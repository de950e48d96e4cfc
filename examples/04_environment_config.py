"""
Environment Configuration Examples.

Demonstrates loading configuration from .env files, environment variables and YAML.
"""

from nightfly.core.env_config import ConfigFileLoader, load_from_env


def example_1_load_from_env():
    """Example 1: NIGHTFLY_* variables and .env."""
    print("\n" + "="*60)
    print("EXAMPLE 1: Load from .env")
    print("="*60 + "\n")

    with open('.env', 'w') as f:
        f.write("NIGHTFLY_USER_AGENT=nightfly-example/0.1\n")
        f.write("NIGHTFLY_TIMEOUT_READ=10\n")
        f.write("NIGHTFLY_REDIRECT_MAX=3\n")

    config = load_from_env()
    print(f"User-Agent: {config.user_agent}")
    print(f"Timeouts: {config.timeout}")
    print(f"Redirects: {config.redirect}")


def example_2_overrides():
    """Example 2: explicit overrides win over the environment."""
    print("\n" + "="*60)
    print("EXAMPLE 2: Overrides")
    print("="*60 + "\n")

    config = load_from_env(redirect_follow=False, log_enabled=True, log_format="json")
    print(f"Follow redirects: {config.redirect.follow}")
    print(f"Logging: {config.logging}")


def example_3_yaml():
    """Example 3: nested YAML file."""
    print("\n" + "="*60)
    print("EXAMPLE 3: YAML config")
    print("="*60 + "\n")

    with open('nightfly.yaml', 'w') as f:
        f.write("user_agent: nightfly-yaml/0.1\n")
        f.write("timeout:\n  connect: 3\n  read: 15\n")
        f.write("pool:\n  max_idle_per_key: 4\n")

    config = ConfigFileLoader.load('nightfly.yaml')
    print(f"User-Agent: {config.user_agent}")
    print(f"Pool: {config.pool}")


if __name__ == "__main__":
    example_1_load_from_env()
    example_2_overrides()
    example_3_yaml()
