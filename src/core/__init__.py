# src/core/__init__.py
"""
Доменный слой (Core Domain).

- fleet: автобусы, маршруты, рейсы
- tracking: приём, хранение и выборки GPS-фиксов
- fanout: рассылка обновлений подписчикам
"""
