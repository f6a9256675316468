# core/__init__.py

"""Ядро SystemQuest: модели, арифметика прогрессии, жизненный цикл квестов,
ежедневный сброс и слияние снимков. Без ввода-вывода."""
