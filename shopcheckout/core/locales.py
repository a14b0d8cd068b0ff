# shopcheckout/core/locales.py

# Уведомления о ваучерах
NOTICE_VOUCHER_NOT_FOUND = "Ваучер '{code}' больше недоступен и не был применен."
NOTICE_VOUCHER_INACTIVE = "Ваучер '{code}' неактивен или истек и не был применен."
NOTICE_VOUCHER_MIN_ORDER = "Ваучер '{code}' требует минимальную сумму заказа {min_order_value}."
NOTICE_TOTAL_MISMATCH = "Итоговая сумма уточнена сервером: {backend_total} (расчет: {client_total})."

# Доставка
NOTICE_SHIPPING_PARTIAL = "Для некоторых магазинов не удалось рассчитать доставку: {details}"
NOTICE_ADDRESS_INCOMPLETE = "Адрес доставки заполнен не полностью."
SHIPPING_ERROR_MISSING_ORIGIN = "Не найден адрес отправки магазина"
SHIPPING_ERROR_ZERO_WEIGHT = "Нулевой вес посылки"
SHIPPING_ERROR_UNKNOWN = "Неизвестная ошибка"

# Ошибки оформления заказа
ERROR_EMPTY_SELECTION = "Не выбраны товары для оформления."
ERROR_ADDRESS_REQUIRED = "Выберите адрес доставки."
ERROR_SUBMIT_DEFAULT = "Не удалось оформить заказ. Попробуйте еще раз."
ERROR_SUBMIT_BAD_REQUEST = "Данные заказа некорректны. Проверьте и попробуйте снова."
ERROR_SUBMIT_OUT_OF_STOCK = "Некоторые товары закончились. Вернитесь в корзину."
ERROR_SUBMIT_INVALID_ADDRESS = "Адрес доставки недействителен. Выберите другой адрес."
ERROR_SUBMIT_NOT_FOUND = "Информация не найдена. Попробуйте еще раз."
ERROR_SUBMIT_QUANTITY_EXCEEDED = "Количество товара превышает остаток на складе. Уменьшите количество."
ERROR_SUBMIT_CONFLICT = "Недостаточно товара. Проверьте корзину."
ERROR_SUBMIT_INVALID_VOUCHER = "Ваучер недействителен или истек. Проверьте выбранные ваучеры."
ERROR_SUBMIT_UNPROCESSABLE = "Данные заказа не могут быть обработаны. Проверьте и попробуйте снова."
ERROR_SUBMIT_AUTH_EXPIRED = "Сессия истекла. Войдите снова."
ERROR_SUBMIT_SERVER_ERROR = "Ошибка сервера. Попробуйте позже."
ERROR_SUBMIT_NETWORK = "Ошибка соединения. Проверьте интернет и попробуйте снова."
