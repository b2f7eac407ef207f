# Services layer for cart, pricing and checkout logic
