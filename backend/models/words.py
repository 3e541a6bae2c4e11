"""Built-in word pool the board is dealt from. All entries are single lowercase words."""
from typing import List

WORD_POOL: List[str] = [
    "acid", "actor", "alarm", "alley", "almond", "anchor", "angel", "apple", "arcade", "archer",
    "army", "arrow", "atlas", "atom", "aurora", "avalanche", "axe", "bacon", "badge", "balloon",
    "banana", "band", "bank", "barrel", "battery", "beach", "beacon", "bear", "bell", "berry",
    "bishop", "blade", "blanket", "blizzard", "bolt", "bomb", "bone", "book", "boot", "bottle",
    "brain", "bread", "brick", "bridge", "bronze", "broom", "bucket", "buffalo", "butter", "cabin",
    "cable", "cage", "cake", "camel", "camera", "candle", "cannon", "canyon", "captain", "carpet",
    "castle", "cave", "chain", "chalk", "cheese", "chef", "cherry", "chimney", "church", "circus",
    "cliff", "clock", "cloud", "clown", "coal", "cobra", "coconut", "coffee", "comet", "compass",
    "copper", "coral", "cotton", "cowboy", "crane", "crater", "cricket", "crown", "crystal", "curtain",
    "dance", "dawn", "deck", "desert", "detective", "diamond", "dice", "dinosaur", "doctor", "dragon",
    "drill", "drum", "eagle", "earth", "echo", "engine", "falcon", "feather", "fence", "ferry",
    "fiddle", "flame", "flute", "forest", "fossil", "fountain", "galaxy", "garden", "ghost", "giant",
    "glacier", "glove", "goblin", "gold", "guitar", "hammer", "harbor", "harp", "helmet", "honey",
    "horizon", "hospital", "iceberg", "island", "ivory", "jacket", "jungle", "kettle", "kingdom", "kite",
    "knight", "ladder", "lantern", "laser", "lemon", "library", "lighthouse", "lion", "lock", "magnet",
    "mammoth", "maple", "marble", "mask", "meteor", "mirror", "moon", "mountain", "museum", "needle",
    "ninja", "oasis", "ocean", "octopus", "orchestra", "owl", "palace", "panda", "parachute", "pearl",
    "penguin", "piano", "pilot", "pirate", "planet", "pyramid", "queen", "rabbit", "radar", "rainbow",
    "robot", "rocket", "saddle", "satellite", "scarecrow", "shadow", "shark", "shield", "silver", "skeleton",
    "snow", "spider", "sphinx", "storm", "submarine", "sugar", "telescope", "temple", "thunder", "tiger",
    "tornado", "tower", "treasure", "trumpet", "tunnel", "umbrella", "unicorn", "vampire", "violin", "volcano",
    "wagon", "waterfall", "whale", "whistle", "wizard", "wolf", "yacht", "zebra",
]
