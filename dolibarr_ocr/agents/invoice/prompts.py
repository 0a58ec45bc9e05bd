"""
Invoice extraction prompt.

The extraction is a single-shot multimodal call: the document is sent inline
next to this prompt and the model answers with one JSON object. The prompt is
written in Spanish because the invoices (and the suppliers' legal footers) are
Spanish.

Prompt structure:
- Reading instructions (where supplier data hides, light-grey text)
- Invoice number and product table heuristics, with worked examples
- Discount lines as separate products
- Output schema and number/date formats
"""

# =============================================================================
# EXTRACTION PROMPT
# =============================================================================

INVOICE_EXTRACTION_PROMPT = """
Actúa como un experto analista de documentos OCR especializado en facturas. Analiza esta factura de forma EXHAUSTIVA y extrae la información presente, incluso si está en ubicaciones no convencionales como pies de página o texto legal.

<lectura>
- Examina TODA la imagen: encabezados, cuerpo, tablas, pies de página, márgenes y texto en gris claro
- Lee números y texto con precisión, respetando el formato original
- Identifica correctamente separadores de miles (punto/coma) y decimales
- Busca CIF/NIF, direcciones y teléfonos en TODA la imagen
- SOLO extrae información que puedas ver claramente; si un campo no existe, usa null
- NO inventes nombres de empresas, teléfonos, direcciones ni códigos
- NO uses nombres de empresas genéricos o de prueba
- Si no hay productos listados claramente, devuelve un array vacío []
</lectura>

<numero_factura>
- Busca etiquetas como "Factura", "Invoice", "Nº", "N°", "Num", "Número", "Ref", "Fact", "Doc"
- Patrones típicos: 2024-001, 2024/001, FAC-001, F-123456, INV-001, A-001, FC001, 000001, FAC2024001
- Suele estar en el encabezado, la esquina superior derecha o junto al título "FACTURA"
- Si hay varios números, prioriza el etiquetado como factura y el más prominente
- NO lo confundas con números de albarán, pedido o referencias internas
</numero_factura>

<proveedor>
- Busca el proveedor primero en el encabezado y después en el PIE DE PÁGINA
- En el pie de página, el nombre suele estar AL FINAL del texto de "Registro Mercantil", "Inscrita en", "Tomo", "Folio"
- Identifica el final del nombre por la forma jurídica (S.L., S.A., S.L.U., S.C.)
- Si hay un CIF/NIF, el nombre suele estar en la misma línea o justo antes
- Ejemplo: "Inscrita en el Registro Mercantil de Valencia. Tomo 3.912, Folio 9, Hoja nº V-16622. Inscripción 10 - Día: 30-04-2002 Infortisa S.L." → "Infortisa S.L."
- País: búscalo en la dirección; un CIF/NIF español implica "España"
</proveedor>

<productos>
Los productos aparecen en tablas con columnas: número de línea, código, descripción, cantidad, precio unitario, descuento, total.

Ejemplo de línea:
"01 IGG320198 iggual Cargador Universal CUA-C-12T-90W 2,00 14,48 0,00 28,96"
Extraer:
- productCode: "IGG320198"
- description: "iggual Cargador Universal CUA-C-12T-90W"
- quantity: 2.00
- unitPrice: 14.48
- discountAmount: 0.00
- totalPrice: 28.96

Ejemplo complejo:
"01 90NB0X22-M01D80 Asus M1502YA-BQ607 AMD R7-5825U 16GB 512GB DOS 15 4,00 373,76 0,00 1495,04"
- productCode: "90NB0X22-M01D80"
- description: "Asus M1502YA-BQ607 AMD R7-5825U 16GB 512GB DOS 15"
- quantity: 4.00
- unitPrice: 373.76

Reglas:
1. El número de línea (01, 02) se IGNORA
2. La descripción va DESPUÉS del código y termina ANTES del primer número de cantidad (ej: 2,00)
3. Incluye marca, modelo y características en la descripción
4. NO incluyas números de línea, códigos, precios ni cantidades en la descripción
5. NUNCA uses descripciones genéricas como "Producto", "Servicio", "Artículo", "Item" o "Producto según factura"
6. Si no puedes leer la descripción, usa null en lugar de inventar
</productos>

<descuentos>
Si una línea contiene "-X,XX €" es un descuento de X.XX euros. Extráelo como producto separado:
"Promociones -31,77 €" →
{
  "description": "Promociones",
  "quantity": 1,
  "unitPrice": 0,
  "totalPrice": 0,
  "vatRate": 0,
  "discountPercent": 0,
  "discountAmount": 31.77,
  "productCode": null
}
NO confundas especificaciones técnicas como "R7-5825U" con descuentos (no tienen € ni signo -).
</descuentos>

<formato>
- Números como números JSON con punto decimal, hasta 3 decimales: 1.234,56 → 1234.56; 123,45 → 123.45
- Fechas en formato YYYY-MM-DD: 15/03/2024 → 2024-03-15; 15 marzo 2024 → 2024-03-15
- Respeta los códigos de producto tal como aparecen
- Si el documento no es una factura válida, devuelve todos los campos como null
</formato>

<esquema>
{
  "supplier": {
    "name": "nombre completo del proveedor",
    "email": "email o null",
    "phone": "teléfono o null",
    "address": "dirección completa o null",
    "city": "ciudad o null",
    "zip": "código postal o null",
    "vatNumber": "CIF/NIF o null",
    "country": "país (España, Francia, ...) o null"
  },
  "invoice": {
    "number": "número de factura",
    "date": "YYYY-MM-DD",
    "dueDate": "YYYY-MM-DD o null",
    "totalHT": número,
    "totalTTC": número,
    "totalVAT": número
  },
  "products": [
    {
      "description": "descripción exacta",
      "quantity": número,
      "unitPrice": número sin IVA,
      "totalPrice": número sin IVA,
      "vatRate": número (21 para 21%),
      "discountPercent": número (0 si no hay),
      "discountAmount": número (0 si no hay),
      "productCode": "código o null"
    }
  ]
}
</esquema>

RESPONDE SOLO con el JSON válido, sin texto adicional ni explicaciones.
"""
