"""
Точка входа: python -m card_idler
Стандартная библиотека патчится gevent до любых других импортов,
чтобы клиент Steam, таймеры и HTTP работали на одном хабе.
"""
from gevent import monkey

monkey.patch_all()

from card_idler.orchestrator import cli  # noqa: E402


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
