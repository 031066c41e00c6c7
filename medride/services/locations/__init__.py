"""Геопозиции водителей: запись, история, трансляция подписчикам поездки."""
