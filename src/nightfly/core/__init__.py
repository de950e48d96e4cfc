"""Ядро nightfly: модели, транспорт, пул, прокси, cookies, редиректы, декодеры."""
