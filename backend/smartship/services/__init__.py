# Services layer: packing, quoting, label purchase and tracking reconciliation
